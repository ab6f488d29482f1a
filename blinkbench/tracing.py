# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Performance trace recording over the dev tools protocol"""
import logging
import threading

from .support.trace_events import TraceError

# blink:
#   everything on the UI thread, including scripting, style recalculations,
#   layout, painting and some compositor work.
# blink.user_timing:
#   marks recorded using window.performance. Marks identify the frames the
#   benchmark cares to measure.
# gpu:
#   tracing data from the GPU
TRACE_CATEGORIES = 'blink,blink.user_timing,gpu'
TRANSFER_MODE = 'SendAsStream'

IDLE = 'idle'
RECORDING = 'recording'
DRAINING = 'draining'


class SessionStateError(TraceError):
    """The tracing session was used out of order"""


class SessionAlreadyActive(SessionStateError):
    """begin() was called while a session is in progress"""
    def __init__(self, label):
        SessionStateError.__init__(
            self, 'Cannot start a new performance trace. A tracing session labeled '
                  '"{0}" is already in progress.'.format(label))
        self.label = label


class SessionNotActive(SessionStateError):
    """end() was called without a session in progress"""
    def __init__(self):
        SessionStateError.__init__(self, 'No tracing session is in progress.')


class MalformedStreamPayload(TraceError):
    """A Tracing.dataCollected notification did not carry a list"""
    def __init__(self, value):
        TraceError.__init__(
            self, '"Tracing.dataCollected" returned malformed data. '
                  'Expected a list but got: {0}'.format(type(value).__name__))
        self.value = value


class TracingTimeout(TraceError):
    """Tracing.tracingComplete never arrived"""


class TracingSession(object):
    """Records one performance trace at a time on a dev tools connection.

    The connection must provide send_command(method, params) plus
    add_listener(fn) / remove_listener(fn) for (method, params) notifications.
    Notifications are delivered on the connection's reader thread."""
    def __init__(self, connection):
        self.connection = connection
        self.lock = threading.Lock()
        self._state = IDLE
        self._label = None
        self._trace_data = None
        self._complete = None
        self._error = None
        self._listening = False

    @property
    def state(self):
        with self.lock:
            return self._state

    @property
    def label(self):
        with self.lock:
            return self._label

    @property
    def is_active(self):
        with self.lock:
            return self._state != IDLE

    def begin(self, label):
        """Start recording a performance trace.

        The label is for debugging convenience."""
        with self.lock:
            if self._state != IDLE:
                raise SessionAlreadyActive(self._label)
            self._state = RECORDING
            self._label = label
            self._trace_data = []
            self._complete = threading.Event()
            self._error = None
            # Subscribe prior to calling "Tracing.start", otherwise we'll miss
            # tracing data.
            self.connection.add_listener(self.on_notification)
            self._listening = True
        logging.debug('Starting trace "%s"', label)
        try:
            self.connection.send_command('Tracing.start', {'categories': TRACE_CATEGORIES,
                                                           'transferMode': TRANSFER_MODE})
        except Exception:
            logging.exception('Error starting trace "%s"', label)
            self._reset()
            raise

    def on_notification(self, method, params):
        """Data arrives as a sequence of "Tracing.dataCollected" followed by
        "Tracing.tracingComplete". The data may be incomplete until then."""
        with self.lock:
            if self._state != RECORDING or self._error is not None:
                return
            if method == 'Tracing.dataCollected':
                value = params.get('value') if isinstance(params, dict) else None
                if not isinstance(value, list):
                    self._error = MalformedStreamPayload(value)
                    logging.error('Aborting trace "%s": %s', self._label, self._error)
                    self._stop_listening()
                    self._complete.set()
                    return
                self._trace_data.extend(value)
            elif method == 'Tracing.tracingComplete':
                logging.debug('Trace "%s" complete, %d events', self._label, len(self._trace_data))
                self._state = DRAINING
                self._stop_listening()
                self._complete.set()

    def end(self, timeout=None):
        """Stop the trace started by begin() and return all of the collected
        trace events, unfiltered."""
        with self.lock:
            if self._state == IDLE:
                raise SessionNotActive()
            label = self._label
            complete = self._complete
        try:
            self.connection.send_command('Tracing.end', {})
            if not complete.wait(timeout):
                raise TracingTimeout('Timed out waiting for trace "{0}" to complete'.format(label))
            with self.lock:
                if self._error is not None:
                    raise self._error
                return self._trace_data
        finally:
            self._reset()

    def _stop_listening(self):
        if self._listening:
            self._listening = False
            self.connection.remove_listener(self.on_notification)

    def _reset(self):
        with self.lock:
            self._stop_listening()
            self._state = IDLE
            self._label = None
            self._trace_data = None
            self._complete = None
            self._error = None
