# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Logic for controlling a desktop Chrome browser"""
import logging
import subprocess
import threading

from .devtools import DevTools, DevToolsError
from .os_util import ChromeLaunchError, find_chrome_executable, kill_process_tree
from .tracing import TracingSession

CHROME_COMMAND_LINE_OPTIONS = [
    '--disable-extensions',
    '--disable-popup-blocking',
    # "browse without sign-in" (Guest session) mode
    '--bwsi',
    '--no-first-run',
    '--no-default-browser-check',
    '--disable-default-apps',
    '--disable-translate',
]

DEVTOOLS_LISTENING = 'DevTools listening'


class ChromeOptions(object):
    """Options passed to Chrome when launching it"""
    def __init__(self, user_data_dir=None, url=None, window_width=1024, window_height=1024,
                 headless=False, debug_port=None, executable=None, no_sandbox=False):
        # Passed as --user-data-dir if set
        self.user_data_dir = user_data_dir
        # Opened in the initial tab if set
        self.url = url
        # The window size matters for screenshots and benchmarks
        self.window_width = window_width
        self.window_height = window_height
        self.headless = headless
        # Without a debug port Chrome is not debuggable (and quits right away
        # when headless).
        self.debug_port = debug_port
        self.executable = executable
        self.no_sandbox = no_sandbox


def build_command_line(exe, options):
    """Chrome command line for the given options"""
    args = [exe]
    if options.user_data_dir is not None:
        args.append('--user-data-dir={0}'.format(options.user_data_dir))
    if options.url is not None:
        args.append(options.url)
    if options.no_sandbox:
        args.append('--no-sandbox')
    if options.headless:
        args.append('--headless')
    if options.debug_port is not None:
        args.append('--remote-debugging-port={0:d}'.format(options.debug_port))
    args.append('--window-size={0:d},{1:d}'.format(options.window_width, options.window_height))
    args.extend(CHROME_COMMAND_LINE_OPTIONS)
    return args


def pump_output(stream):
    """Log the browser output until the stream closes"""
    for line in stream:
        logging.info('[CHROME]: %s', line.rstrip())


def wait_for_devtools(stream):
    """Wait for Chrome to print the DevTools url on stderr"""
    for line in stream:
        line = line.rstrip()
        logging.info('[CHROME]: %s', line)
        if line.startswith(DEVTOOLS_LISTENING):
            return line
    raise ChromeLaunchError('Expected Chrome to print "DevTools listening" string '
                            'with DevTools URL, but the string was never printed.')


class Chrome(object):
    """Manages a single Chrome process"""
    def __init__(self, proc, on_error, devtools=None):
        self.proc = proc
        self.on_error = on_error
        self.devtools = devtools
        self.is_stopped = False
        self.tracing = TracingSession(devtools) if devtools is not None else None
        # If the Chrome process quits before it was asked to, tell the error listener
        self.watchdog = threading.Thread(target=self.watch_process)
        self.watchdog.daemon = True
        self.watchdog.start()

    @staticmethod
    def launch(options, on_error, working_dir=None, connect_timeout=30):
        """Launch Chrome with the given options.

        on_error is called with a message if the process exits before stop()."""
        exe = options.executable if options.executable else find_chrome_executable()
        try:
            version = subprocess.check_output([exe, '--version'], universal_newlines=True)
            logging.info('Launching %s', version.strip())
        except (OSError, subprocess.CalledProcessError):
            logging.exception('Error getting the Chrome version')
        command_line = build_command_line(exe, options)
        logging.debug(' '.join(command_line))
        proc = subprocess.Popen(command_line, cwd=working_dir, stdout=subprocess.PIPE,
                                stderr=subprocess.PIPE, universal_newlines=True)
        threading.Thread(target=pump_output, args=(proc.stdout,), daemon=True).start()
        devtools = None
        try:
            if options.debug_port is not None:
                wait_for_devtools(proc.stderr)
                threading.Thread(target=pump_output, args=(proc.stderr,), daemon=True).start()
                devtools = DevTools(options.debug_port)
                devtools.connect(connect_timeout)
            else:
                threading.Thread(target=pump_output, args=(proc.stderr,), daemon=True).start()
        except Exception:
            kill_process_tree(proc.pid)
            raise
        return Chrome(proc, on_error, devtools)

    def watch_process(self):
        """Background thread waiting for the browser to exit"""
        exit_code = self.proc.wait()
        if not self.is_stopped:
            self.on_error('Chrome process exited prematurely with exit code {0}'.format(exit_code))

    def begin_recording_performance(self, label):
        """Start recording a performance trace.

        Fails if a tracing session is already in progress."""
        if self.tracing is None:
            raise DevToolsError('Chrome was launched without a debug port')
        self.tracing.begin(label)

    def end_recording_performance(self, timeout=None):
        """Stop the trace and return all of the collected data, unfiltered"""
        if self.tracing is None:
            raise DevToolsError('Chrome was launched without a debug port')
        return self.tracing.end(timeout)

    def stop(self):
        """Stop the Chrome process"""
        self.is_stopped = True
        if self.devtools is not None:
            self.devtools.close()
        kill_process_tree(self.proc.pid)
