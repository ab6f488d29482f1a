import io
import subprocess
import threading

import pytest

import blinkbench.chrome_desktop
from blinkbench.chrome_desktop import Chrome, ChromeOptions, build_command_line, wait_for_devtools
from blinkbench.devtools import DevToolsError
from blinkbench.os_util import ChromeLaunchError, find_chrome_executable


class FakeProcess(object):
    def __init__(self, stdout='', stderr='', exit_code=0, exits=False):
        self.pid = 4242
        self.stdout = io.StringIO(stdout)
        self.stderr = io.StringIO(stderr)
        self.exit_code = exit_code
        self.exited = threading.Event()
        if exits:
            self.exited.set()

    def wait(self):
        self.exited.wait()
        return self.exit_code


class FakeTracing(object):
    def __init__(self):
        self.calls = []

    def begin(self, label):
        self.calls.append(('begin', label))

    def end(self, timeout=None):
        self.calls.append(('end', timeout))
        return [{'ts': 1}]


def test_command_line():
    options = ChromeOptions(user_data_dir='/tmp/profile', url='http://localhost:8080/',
                            headless=True, debug_port=9222, no_sandbox=True)
    args = build_command_line('chrome', options)
    assert args[:7] == ['chrome', '--user-data-dir=/tmp/profile', 'http://localhost:8080/',
                        '--no-sandbox', '--headless', '--remote-debugging-port=9222',
                        '--window-size=1024,1024']
    assert '--bwsi' in args
    assert '--disable-extensions' in args


def test_command_line_defaults():
    args = build_command_line('chrome', ChromeOptions(window_width=800, window_height=600))
    assert '--headless' not in args
    assert '--no-sandbox' not in args
    assert not [arg for arg in args if arg.startswith('--remote-debugging-port')]
    assert '--window-size=800,600' in args


def test_wait_for_devtools():
    stream = io.StringIO('[WARNING] foo\nDevTools listening on ws://127.0.0.1:9222/devtools/browser/x\n')
    assert wait_for_devtools(stream).startswith('DevTools listening')


def test_wait_for_devtools_never_printed():
    with pytest.raises(ChromeLaunchError):
        wait_for_devtools(io.StringIO('some error\n'))


def test_premature_exit_is_reported():
    errors = []
    reported = threading.Event()

    def on_error(message):
        errors.append(message)
        reported.set()
    Chrome(FakeProcess(exit_code=3, exits=True), on_error)
    assert reported.wait(5)
    assert errors == ['Chrome process exited prematurely with exit code 3']


def test_stop_is_not_an_error(monkeypatch):
    killed = []
    monkeypatch.setattr(blinkbench.chrome_desktop, 'kill_process_tree', killed.append)
    errors = []
    proc = FakeProcess()
    chrome = Chrome(proc, errors.append)
    chrome.stop()
    proc.exited.set()
    chrome.watchdog.join(5)
    assert killed == [4242]
    assert errors == []


def test_recording_delegates_to_tracing():
    proc = FakeProcess()
    chrome = Chrome(proc, lambda message: None)
    chrome.tracing = FakeTracing()
    chrome.begin_recording_performance('scroll')
    assert chrome.end_recording_performance(5) == [{'ts': 1}]
    assert chrome.tracing.calls == [('begin', 'scroll'), ('end', 5)]
    chrome.is_stopped = True
    proc.exited.set()


def test_recording_needs_debug_port():
    proc = FakeProcess()
    chrome = Chrome(proc, lambda message: None)
    with pytest.raises(DevToolsError):
        chrome.begin_recording_performance('scroll')
    chrome.is_stopped = True
    proc.exited.set()


def test_launch_without_debugging(monkeypatch):
    launched = []
    proc = FakeProcess(stdout='hello\n')

    def fake_popen(args, **kwargs):
        launched.append(args)
        return proc
    monkeypatch.setattr(subprocess, 'check_output', lambda args, **kwargs: 'Google Chrome 120\n')
    monkeypatch.setattr(subprocess, 'Popen', fake_popen)
    chrome = Chrome.launch(ChromeOptions(executable='/opt/chrome'), lambda message: None)
    assert launched[0][0] == '/opt/chrome'
    assert chrome.devtools is None
    assert chrome.tracing is None
    chrome.is_stopped = True
    proc.exited.set()


def test_launch_kills_browser_without_devtools_banner(monkeypatch):
    killed = []
    proc = FakeProcess(stderr='crashed\n')
    monkeypatch.setattr(subprocess, 'check_output', lambda args, **kwargs: 'Google Chrome 120\n')
    monkeypatch.setattr(subprocess, 'Popen', lambda args, **kwargs: proc)
    monkeypatch.setattr(blinkbench.chrome_desktop, 'kill_process_tree', killed.append)
    with pytest.raises(ChromeLaunchError):
        Chrome.launch(ChromeOptions(executable='/opt/chrome', debug_port=9222), lambda message: None)
    assert killed == [4242]


def test_find_chrome_executable_from_environment():
    assert find_chrome_executable({'CHROME_EXECUTABLE': '/opt/chrome'}) == '/opt/chrome'


def test_find_chrome_executable_missing_on_linux(monkeypatch):
    monkeypatch.setattr('platform.system', lambda: 'Linux')
    monkeypatch.setattr('shutil.which', lambda name: None)
    with pytest.raises(ChromeLaunchError):
        find_chrome_executable({})


def test_find_chrome_executable_unsupported(monkeypatch):
    monkeypatch.setattr('platform.system', lambda: 'Windows')
    with pytest.raises(ChromeLaunchError):
        find_chrome_executable({})
