#!/usr/bin/env python
# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Blink frame timing benchmark agent"""
import gzip
import logging
import logging.handlers
import os
import sys
import time
from time import monotonic
try:
    import ujson as json
except BaseException:
    import json

GZIP_TEXT = 'wt'


def parse_ini(ini):
    """Parse an ini file and convert it to a dictionary"""
    ret = None
    if os.path.isfile(ini):
        import configparser
        parser = configparser.ConfigParser()
        parser.read(ini)
        ret = {}
        for section in parser.sections():
            ret[section] = {}
            for item in parser.items(section):
                ret[section][item[0]] = item[1]
        if not ret:
            ret = None
    return ret


def is_true(value):
    """ini/environment style boolean"""
    return str(value).strip().lower() in ['1', 'true', 'yes', 'on']


def chrome_options(options, settings=None, environ=None):
    """Resolve the browser options.

    The command line wins over the ini file which wins over the environment."""
    from blinkbench.chrome_desktop import ChromeOptions
    if environ is None:
        environ = os.environ
    chrome = {}
    if settings is not None and 'chrome' in settings:
        chrome = settings['chrome']
    exe = options.chrome
    if not exe:
        exe = chrome.get('exe')
    if not exe:
        exe = environ.get('CHROME_EXECUTABLE')
    no_sandbox = options.nosandbox
    if not no_sandbox and 'no_sandbox' in chrome:
        no_sandbox = is_true(chrome['no_sandbox'])
    elif not no_sandbox:
        no_sandbox = environ.get('CHROME_NO_SANDBOX') == 'true'
    width = options.width if options.width else int(chrome.get('width', 1024))
    height = options.height if options.height else int(chrome.get('height', 1024))
    return ChromeOptions(user_data_dir=options.userdatadir, url=options.url,
                         window_width=width, window_height=height,
                         headless=options.headless, debug_port=options.port,
                         executable=exe, no_sandbox=no_sandbox)


class BenchAgent(object):
    """Launch Chrome, record a trace and summarize it"""
    def __init__(self, options, browser_options):
        self.options = options
        self.browser_options = browser_options
        self.browser = None
        self.browser_error = None

    def on_browser_error(self, message):
        """Called from the browser watchdog thread"""
        logging.critical(message)
        self.browser_error = message

    def record(self):
        """Record the trace for the configured duration and return the raw events"""
        from blinkbench.chrome_desktop import Chrome
        self.browser = Chrome.launch(self.browser_options, self.on_browser_error,
                                     connect_timeout=self.options.timeout)
        try:
            self.browser.begin_recording_performance(self.options.label)
            end_time = monotonic() + self.options.duration
            while monotonic() < end_time and self.browser_error is None:
                time.sleep(0.1)
            if self.browser_error is not None:
                raise RuntimeError(self.browser_error)
            return self.browser.end_recording_performance(self.options.timeout)
        finally:
            self.browser.stop()
            self.browser = None

    def run(self):
        """Returns the process exit code"""
        from blinkbench.support.trace_summary import summarize
        trace_json = self.record()
        logging.info('Collected %d trace events', len(trace_json))
        if self.options.traceout:
            with gzip.open(self.options.traceout, GZIP_TEXT, 7) as f_out:
                json.dump(trace_json, f_out)
        summary = summarize(trace_json, self.options.dump)
        if summary is None:
            logging.warning('The benchmark did not measure any frames')
            out = None
        else:
            logging.info('%s', summary)
            out = summary.to_json()
        if self.options.out:
            with open(self.options.out, 'w') as f_out:
                json.dump(out, f_out)
        else:
            sys.stdout.write(json.dumps(out) + "\n")
        return 0


def main(argv=None):
    """Startup and initialization"""
    import argparse
    parser = argparse.ArgumentParser(description='Blink frame timing benchmark agent.',
                                     prog='bench-agent')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help="Increase verbosity (specify multiple times for more)."
                        " -vvvv for full debug output.")
    parser.add_argument('--log',
                        help="Log critical errors to the given file.")
    parser.add_argument('--ini', default=os.path.join(os.path.dirname(os.path.abspath(__file__)),
                                                      'benchagent.ini'),
                        help="Browser settings file (defaults to benchagent.ini next to the agent).")
    parser.add_argument('--url', help="Benchmark page to load.")
    parser.add_argument('--port', type=int, default=9222, help="Remote debugging port.")
    parser.add_argument('--duration', type=float, default=10,
                        help="Seconds to record the trace for.")
    parser.add_argument('--timeout', type=float, default=60,
                        help="Seconds to wait for dev tools and the trace to complete.")
    parser.add_argument('--label', default='benchmark', help="Name of the tracing session.")
    parser.add_argument('--headless', action='store_true', default=False,
                        help="Run Chrome headless.")
    parser.add_argument('--nosandbox', action='store_true', default=False,
                        help="Run Chrome with --no-sandbox.")
    parser.add_argument('--userdatadir', help="Chrome profile directory.")
    parser.add_argument('--width', type=int, help="Browser window width.")
    parser.add_argument('--height', type=int, help="Browser window height.")
    parser.add_argument('--chrome', help="Chrome executable.")
    parser.add_argument('--dump', default=os.path.join('.', 'chrome-trace.json'),
                        help="Where to save the trace if it can not be interpreted.")
    parser.add_argument('--out', help="Summary output file (stdout if not specified).")
    parser.add_argument('--traceout', help="Save the raw trace (gzipped) to the given file.")
    options, _ = parser.parse_known_args(argv)

    # Set up logging
    log_level = logging.CRITICAL
    if options.verbose == 1:
        log_level = logging.ERROR
    elif options.verbose == 2:
        log_level = logging.WARNING
    elif options.verbose == 3:
        log_level = logging.INFO
    elif options.verbose >= 4:
        log_level = logging.DEBUG
    logging.basicConfig(level=log_level, format="%(asctime)s.%(msecs)03d - %(message)s",
                        datefmt="%H:%M:%S")

    if options.log:
        err_log = logging.handlers.RotatingFileHandler(options.log, maxBytes=1000000,
                                                       backupCount=5, delay=True)
        err_log.setLevel(logging.ERROR)
        logging.getLogger().addHandler(err_log)

    if not options.url:
        parser.error("The benchmark url is not specified.")

    agent = BenchAgent(options, chrome_options(options, parse_ini(options.ini)))
    try:
        return agent.run()
    except Exception:
        logging.exception('Benchmark failed')
        return 1


if __name__ == '__main__':
    sys.exit(main())
