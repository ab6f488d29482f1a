#!/usr/bin/env python
"""
Copyright 2019 WebPageTest LLC.
Copyright 2016 Google Inc.
Copyright 2020 Catchpoint Systems Inc.
Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
found in the LICENSE.md file.
"""
import gzip
import logging
import os
import sys
import time
from datetime import timedelta

# try a fast json parser if it is installed
try:
    import ujson as json
except BaseException:
    import json

from .frame_parser import extract_renderer_frames
from .trace_events import TraceError, parse_events

GZIP_TEXT = 'wt'
GZIP_READ_TEXT = 'rt'

# Number of trailing samples used to compute the averages.
# Keep in sync with the sample count used by the benchmark page recorder.
MEASURED_SAMPLE_COUNT = 10

DEFAULT_DUMP_PATH = os.path.join('.', 'chrome-trace.json')


class MissingDurationError(TraceError):
    """A duration event lacks its "tdur" field"""
    def __init__(self, message, event=None):
        TraceError.__init__(self, message)
        self.event = event


def compute_average_duration(events, sample_count=MEASURED_SAMPLE_COUNT):
    """Average "tdur" of the last sample_count events as a timedelta"""
    if not events:
        raise ValueError('Cannot compute the average duration of zero events')
    window = events[-sample_count:]
    total = 0
    for event in window:
        if event is None:
            raise MissingDurationError('Frame lacks a duration event')
        if event.tdur is None:
            raise MissingDurationError('Trace event lacks "tdur" field: {0!r}'.format(event), event)
        total += event.tdur
    # truncate toward zero
    average = abs(total) // len(window)
    if total < 0:
        average = -average
    return timedelta(microseconds=average)


def _ms(value):
    return value / timedelta(milliseconds=1)


class BlinkTraceSummary(object):
    """Summarizes a Blink trace down to a few interesting values"""
    __slots__ = ['average_begin_frame_time', 'average_update_lifecycle_phases_time',
                 'average_total_ui_frame_time']

    def __init__(self, average_begin_frame_time, average_update_lifecycle_phases_time):
        # Scripting time of an animation frame plus a small amount of work the
        # browser does around it.
        object.__setattr__(self, 'average_begin_frame_time', average_begin_frame_time)
        # Style, layout, painting and compositor work. Does not include GPU time.
        object.__setattr__(self, 'average_update_lifecycle_phases_time',
                           average_update_lifecycle_phases_time)
        # The vast majority of the UI thread work in a frame.
        object.__setattr__(self, 'average_total_ui_frame_time',
                           average_begin_frame_time + average_update_lifecycle_phases_time)

    def __setattr__(self, key, value):
        raise AttributeError('BlinkTraceSummary is immutable')

    @staticmethod
    def from_frames(frames):
        """Reduce the extracted frames. Returns None if there are none."""
        if not frames:
            return None
        return BlinkTraceSummary(
            compute_average_duration([frame.begin_frame for frame in frames]),
            compute_average_duration([frame.update_all_lifecycle_phases for frame in frames]))

    @staticmethod
    def from_json(trace_json, dump_path=DEFAULT_DUMP_PATH):
        """Run the full pipeline over raw trace events.

        Returns None when the benchmark did not measure any frames. On any
        interpretation failure the raw trace is saved to dump_path and the
        error is re-raised."""
        try:
            events = parse_events(trace_json)
            extraction = extract_renderer_frames(events)
            return BlinkTraceSummary.from_frames(extraction.frames)
        except Exception:
            logging.error('Failed to interpret the Chrome trace contents. '
                          'The trace was saved in %s', dump_path)
            dump_trace(trace_json, dump_path)
            raise

    def to_json(self):
        """Values in milliseconds"""
        return {
            'averageBeginFrameTime': _ms(self.average_begin_frame_time),
            'averageUpdateLifecyclePhasesTime': _ms(self.average_update_lifecycle_phases_time),
            'averageTotalUIFrameTime': _ms(self.average_total_ui_frame_time)
        }

    def __eq__(self, other):
        if not isinstance(other, BlinkTraceSummary):
            return NotImplemented
        return all(getattr(self, key) == getattr(other, key) for key in self.__slots__)

    def __hash__(self):
        return hash(tuple(getattr(self, key) for key in self.__slots__))

    def __str__(self):
        return 'BlinkTraceSummary(averageBeginFrameTime: {0}ms, ' \
               'averageUpdateLifecyclePhasesTime: {1}ms)'.format(
                   _ms(self.average_begin_frame_time),
                   _ms(self.average_update_lifecycle_phases_time))


def summarize(trace_json, dump_path=DEFAULT_DUMP_PATH):
    """Summarize raw trace events. None means no frames were measured."""
    return BlinkTraceSummary.from_json(trace_json, dump_path)


def summarize_frames(frames):
    """Reduce already extracted frames. None means no frames were measured."""
    return BlinkTraceSummary.from_frames(frames)


def dump_trace(trace_json, path):
    """Best-effort pretty-printed copy of the raw trace for postmortems"""
    try:
        with open(path, 'w', encoding='utf-8') as f_out:
            json.dump(trace_json, f_out, indent=2)
    except Exception:
        logging.exception('Error writing the trace to %s', path)


##########################################################################
#   Saved traces
##########################################################################
def load_trace(trace):
    """Load raw events from a saved trace file.

    Accepts a JSON array, a {"traceEvents": [...]} object or one event per
    line (optionally gzipped)."""
    _, ext = os.path.splitext(trace)
    if ext.lower() == '.gz':
        f_in = gzip.open(trace, GZIP_READ_TEXT, encoding='utf-8')
    else:
        f_in = open(trace, 'r', encoding='utf-8')
    with f_in:
        content = f_in.read()
    try:
        data = json.loads(content)
    except ValueError:
        data = None
    if isinstance(data, dict) and 'traceEvents' in data:
        return data['traceEvents']
    if isinstance(data, list):
        return data
    events = []
    for line in content.splitlines():
        line = line.strip("\r\n\t ,[]")
        if line:
            events.append(json.loads(line))
    return events


def write_json(out_file, json_data):
    """Write a json blob (gzipped if the extension is .gz)"""
    _, ext = os.path.splitext(out_file)
    if ext.lower() == '.gz':
        with gzip.open(out_file, GZIP_TEXT) as f_out:
            json.dump(json_data, f_out)
    else:
        with open(out_file, 'w') as f_out:
            json.dump(json_data, f_out)


def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description='Blink frame timing summarizer.',
                                     prog='trace-summary')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help="Increase verbosity (specify multiple times for more). -vvvv for full debug output.")
    parser.add_argument('-t', '--trace', help="Input trace file.")
    parser.add_argument('-o', '--out', help="Output summary file (stdout if not specified).")
    parser.add_argument('-d', '--dump', default=DEFAULT_DUMP_PATH,
                        help="Where to save the trace if it can not be interpreted.")
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
    logging.basicConfig(
        level=log_level, format="%(asctime)s.%(msecs)03d - %(message)s", datefmt="%H:%M:%S")

    if not options.trace:
        parser.error("Input trace file is not specified.")

    start = time.time()
    try:
        summary = summarize(load_trace(options.trace), options.dump)
    except Exception:
        logging.exception('Failed to summarize %s', options.trace)
        return 1
    out = summary.to_json() if summary is not None else None
    if summary is None:
        logging.warning("No measured frames in %s", options.trace)
    if options.out:
        write_json(options.out, out)
    else:
        sys.stdout.write(json.dumps(out) + "\n")

    elapsed = time.time() - start
    logging.debug("Elapsed Time: %0.4f", elapsed)
    return 0


if '__main__' == __name__:
    sys.exit(main())
