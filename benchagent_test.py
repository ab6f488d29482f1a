import json
import logging
import warnings

import benchagent


def test_imports():
    # pylint: disable=W0611
    import psutil
    import requests
    import ws4py

    import benchagent
    from blinkbench.chrome_desktop import Chrome
    from blinkbench.devtools import DevTools
    from blinkbench.tracing import TracingSession
    from blinkbench.support.trace_summary import summarize

    try:
        import ujson as json
    except BaseException:
        warnings.warn(UserWarning("Ujson couldn't import, defaulting to json lib"))
        import json


def parse(args):
    import argparse
    options = argparse.Namespace(chrome=None, nosandbox=False, width=None, height=None,
                                 userdatadir=None, url='http://localhost:8080/', headless=True,
                                 port=9222)
    for key, value in args.items():
        setattr(options, key, value)
    return options


def test_chrome_options_defaults():
    options = benchagent.chrome_options(parse({}), None, {})
    assert options.executable is None
    assert options.no_sandbox is False
    assert options.window_width == 1024
    assert options.window_height == 1024
    assert options.debug_port == 9222
    assert options.headless is True
    assert options.url == 'http://localhost:8080/'


def test_chrome_options_environment():
    options = benchagent.chrome_options(parse({}), None, {'CHROME_EXECUTABLE': '/env/chrome',
                                                          'CHROME_NO_SANDBOX': 'true'})
    assert options.executable == '/env/chrome'
    assert options.no_sandbox is True


def test_chrome_options_precedence():
    settings = {'chrome': {'exe': '/ini/chrome', 'no_sandbox': 'false', 'width': '800'}}
    environ = {'CHROME_EXECUTABLE': '/env/chrome', 'CHROME_NO_SANDBOX': 'true'}
    options = benchagent.chrome_options(parse({}), settings, environ)
    assert options.executable == '/ini/chrome'
    assert options.no_sandbox is False
    assert options.window_width == 800
    options = benchagent.chrome_options(parse({'chrome': '/cli/chrome', 'nosandbox': True,
                                               'width': 640}), settings, environ)
    assert options.executable == '/cli/chrome'
    assert options.no_sandbox is True
    assert options.window_width == 640


def test_parse_ini(tmp_path):
    ini = tmp_path / 'benchagent.ini'
    ini.write_text('[chrome]\nexe=/opt/chrome\nno_sandbox=1\n')
    assert benchagent.parse_ini(str(ini)) == {'chrome': {'exe': '/opt/chrome', 'no_sandbox': '1'}}
    assert benchagent.parse_ini(str(tmp_path / 'missing.ini')) is None


def renderer_frames(count):
    events = [{'name': 'thread_name', 'ph': 'M', 'pid': 1, 'tid': 1, 'ts': 0,
               'args': {'name': 'CrRendererMain'}}]
    for index in range(count):
        ts = 100 * (index + 1)
        events.extend([
            {'name': 'measured_frame', 'ph': 'b', 'pid': 1, 'tid': 1, 'ts': ts, 'args': {}},
            {'name': 'WebViewImpl::beginFrame', 'ph': 'X', 'pid': 1, 'tid': 1, 'ts': ts + 1,
             'tdur': 1000, 'args': {}},
            {'name': 'measured_frame', 'ph': 'e', 'pid': 1, 'tid': 1, 'ts': ts + 2, 'args': {}},
            {'name': 'WebViewImpl::updateAllLifecyclePhases', 'ph': 'X', 'pid': 1, 'tid': 1,
             'ts': ts + 3, 'tdur': 2000, 'args': {}},
        ])
    return events


def agent_options(tmp_path, **kwargs):
    import argparse
    options = argparse.Namespace(out=str(tmp_path / 'summary.json'), traceout=None,
                                 dump=str(tmp_path / 'chrome-trace.json'))
    for key, value in kwargs.items():
        setattr(options, key, value)
    return options


def test_run_writes_summary(tmp_path, monkeypatch):
    agent = benchagent.BenchAgent(agent_options(tmp_path, traceout=str(tmp_path / 'trace.json.gz')),
                                  None)
    monkeypatch.setattr(agent, 'record', lambda: renderer_frames(12))
    assert agent.run() == 0
    with open(str(tmp_path / 'summary.json')) as f_in:
        assert json.load(f_in) == {'averageBeginFrameTime': 1.0,
                                   'averageUpdateLifecyclePhasesTime': 2.0,
                                   'averageTotalUIFrameTime': 3.0}
    assert (tmp_path / 'trace.json.gz').exists()


def test_run_without_frames(tmp_path, monkeypatch):
    agent = benchagent.BenchAgent(agent_options(tmp_path), None)
    monkeypatch.setattr(agent, 'record', lambda: renderer_frames(0))
    assert agent.run() == 0
    with open(str(tmp_path / 'summary.json')) as f_in:
        assert json.load(f_in) is None


def test_main_reports_failure(tmp_path, monkeypatch, caplog):
    def fail(self):
        raise RuntimeError('no chrome')
    monkeypatch.setattr(benchagent.BenchAgent, 'record', fail)
    with caplog.at_level(logging.ERROR):
        assert benchagent.main(['--url', 'http://localhost:8080/',
                                '--ini', str(tmp_path / 'missing.ini')]) == 1
    assert 'Benchmark failed' in caplog.text
