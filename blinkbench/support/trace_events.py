# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Blink trace event model.

Parses a single raw trace event (as delivered by Chrome's tracer through the
"Tracing.dataCollected" notification) and classifies it.

Sample event (the data is bogus, this just shows the format):

    {
      "name": "myName",
      "cat": "category,list",
      "ph": "B",
      "ts": 12345,
      "pid": 123,
      "tid": 456,
      "args": {"someArg": 1}
    }

Format reference:
https://docs.google.com/document/d/1CvAClvFfyA5R-PhYUmn5OOQtYMH4h6I0nSsKchNAySU/preview
"""
import math
import numbers
try:
    import ujson as json
except BaseException:
    import json

# Trace event phases
PHASE_COMPLETE = 'X'
PHASE_ASYNC_BEGIN = 'b'
PHASE_ASYNC_END = 'e'

BEGIN_FRAME = 'WebViewImpl::beginFrame'
UPDATE_ALL_LIFECYCLE_PHASES = 'WebViewImpl::updateAllLifecyclePhases'
THREAD_NAME = 'thread_name'
RENDERER_MAIN_THREAD = 'CrRendererMain'
MEASURED_FRAME = 'measured_frame'

INT_FIELDS = ['pid', 'tid', 'ts', 'tts', 'tdur']


class TraceError(Exception):
    """Base class for all trace capture and interpretation failures"""


class MalformedEvent(TraceError):
    """A raw trace record could not be parsed"""
    def __init__(self, message, key=None, value=None):
        TraceError.__init__(self, message)
        self.key = key
        self.value = value


def read_int(raw, key):
    """Read an integer out of a raw event.

    JSON does not distinguish between integers and floats so numbers are
    truncated. Returns None if the value is missing or null."""
    value = raw.get(key)
    if value is None:
        return None
    # bool is a numbers.Number too
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise MalformedEvent('Trace event field "{0}" is not a number: {1!r}'.format(key, value),
                             key, value)
    if isinstance(value, numbers.Integral):
        return int(value)
    if math.isnan(value) or math.isinf(value):
        raise MalformedEvent('Trace event field "{0}" is not representable as an integer: {1!r}'.format(key, value),
                             key, value)
    return int(value)


class TraceEvent(object):
    """An event collected by the Blink tracer (chrome://tracing)"""
    __slots__ = ['args', 'cat', 'name', 'ph', 'pid', 'tid', 'ts', 'tts', 'tdur']

    def __init__(self, args=None, cat=None, name=None, ph=None, pid=None, tid=None,
                 ts=None, tts=None, tdur=None):
        # Event-specific data
        object.__setattr__(self, 'args', args if args is not None else {})
        object.__setattr__(self, 'cat', cat)
        object.__setattr__(self, 'name', name)
        # Event "phase"
        object.__setattr__(self, 'ph', ph)
        object.__setattr__(self, 'pid', pid)
        object.__setattr__(self, 'tid', tid)
        # Timestamp in microseconds using the tracer clock
        object.__setattr__(self, 'ts', ts)
        # Timestamp in microseconds using the thread clock
        object.__setattr__(self, 'tts', tts)
        # Thread duration in microseconds (complete events only)
        object.__setattr__(self, 'tdur', tdur)

    def __setattr__(self, key, value):
        raise AttributeError('TraceEvent is immutable')

    @staticmethod
    def from_json(raw):
        """Parse an event from its JSON representation"""
        if not isinstance(raw, dict):
            raise MalformedEvent('Trace event is not an object: {0!r}'.format(raw))
        args = raw.get('args')
        if args is None:
            args = {}
        elif not isinstance(args, dict):
            raise MalformedEvent('Trace event "args" is not an object: {0!r}'.format(args),
                                 'args', args)
        values = {}
        for key in INT_FIELDS:
            values[key] = read_int(raw, key)
        return TraceEvent(args=args, cat=raw.get('cat'), name=raw.get('name'), ph=raw.get('ph'),
                          **values)

    def to_json(self):
        """Wire representation (None fields are left out)"""
        out = {'args': self.args}
        for key in ['cat', 'name', 'ph'] + INT_FIELDS:
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out

    @property
    def is_begin_frame(self):
        """All of the scripting time of an animation frame plus a negligible
        amount of browser overhead. Carries tdur."""
        return self.ph == PHASE_COMPLETE and self.name == BEGIN_FRAME

    @property
    def is_update_all_lifecycle_phases(self):
        """Style, layout, paint and part of compositing for an animation frame.
        Carries tdur."""
        return self.ph == PHASE_COMPLETE and self.name == UPDATE_ALL_LIFECYCLE_PHASES

    @property
    def is_cr_renderer_main(self):
        """Names the renderer main thread. Its pid identifies the process that
        renders the page under test."""
        return self.name == THREAD_NAME and self.args.get('name') == RENDERER_MAIN_THREAD

    @property
    def is_begin_measured_frame(self):
        """Start of a "measured_frame" mark emitted by the benchmark harness"""
        return self.ph == PHASE_ASYNC_BEGIN and self.name == MEASURED_FRAME

    @property
    def is_end_measured_frame(self):
        """End of a "measured_frame" mark emitted by the benchmark harness"""
        return self.ph == PHASE_ASYNC_END and self.name == MEASURED_FRAME

    def __eq__(self, other):
        if not isinstance(other, TraceEvent):
            return NotImplemented
        return all(getattr(self, key) == getattr(other, key) for key in self.__slots__)

    def __hash__(self):
        return hash((self.name, self.ph, self.pid, self.tid, self.ts))

    def __repr__(self):
        return 'TraceEvent(args: {0}, cat: {1}, name: {2}, ph: {3}, pid: {4}, tid: {5}, ' \
               'ts: {6}, tts: {7}, tdur: {8})'.format(json.dumps(self.args), self.cat, self.name,
                                                      self.ph, self.pid, self.tid, self.ts,
                                                      self.tts, self.tdur)


def parse_events(raw_events):
    """Parse a list of raw trace records. Fails on the first malformed record."""
    return [TraceEvent.from_json(raw) for raw in raw_events]
