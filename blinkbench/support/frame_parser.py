# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Reconstruct animation frames from a Blink trace"""
import logging
from collections import namedtuple

from .trace_events import TraceError

FrameExtraction = namedtuple('FrameExtraction', ['frames', 'skipped_count'])


class ProcessIdentityError(TraceError):
    """The renderer process could not be identified unambiguously"""
    def __init__(self, message, pids=None):
        TraceError.__init__(self, message)
        self.pids = pids if pids is not None else []


class BlinkFrame(object):
    """Events pertaining to a single frame in the Blink trace data"""
    def __init__(self):
        # 'WebViewImpl::beginFrame'
        self.begin_frame = None
        # 'WebViewImpl::updateAllLifecyclePhases'
        self.update_all_lifecycle_phases = None
        # 'measured_frame' begin event
        self.begin_measured_frame = None
        # 'measured_frame' end event
        self.end_measured_frame = None

    @property
    def is_complete(self):
        return self.end_measured_frame is not None

    def __repr__(self):
        return 'BlinkFrame(begin_frame: {0!r}, update_all_lifecycle_phases: {1!r}, ' \
               'begin_measured_frame: {2!r}, end_measured_frame: {3!r})'.format(
                   self.begin_frame, self.update_all_lifecycle_phases,
                   self.begin_measured_frame, self.end_measured_frame)


def _timestamp_key(event):
    # Missing timestamps sort first
    return (event.ts is not None, event.ts if event.ts is not None else 0)


def sort_events(events):
    """Sort the events by timestamp (stable, equal timestamps keep arrival order)"""
    return sorted(events, key=_timestamp_key)


def find_renderer_pid(events):
    """Find the pid of the process that renders the page.

    Exactly one "CrRendererMain" thread name event must be present."""
    labels = [event for event in events if event.is_cr_renderer_main]
    if len(labels) != 1:
        pids = [event.pid for event in labels]
        raise ProcessIdentityError('Expected exactly one CrRendererMain thread in the trace '
                                   'but found {0:d} (pids: {1})'.format(len(labels), pids), pids)
    return labels[0].pid


def filter_process(events, pid):
    """Filter out data from unrelated processes"""
    return [event for event in events if event.pid == pid]


def extract_frames(events):
    """Pair the time-ordered events of one process into frames.

    A frame is closed by its "updateAllLifecyclePhases" event and is only kept
    if a "measured_frame" end event was seen before that point."""
    frames = []
    skipped_count = 0
    frame = BlinkFrame()
    for event in events:
        if event.is_begin_frame:
            frame.begin_frame = event
        elif event.is_update_all_lifecycle_phases:
            frame.update_all_lifecycle_phases = event
            if frame.is_complete:
                frames.append(frame)
            else:
                skipped_count += 1
            frame = BlinkFrame()
        elif event.is_begin_measured_frame:
            frame.begin_measured_frame = event
        elif event.is_end_measured_frame:
            frame.end_measured_frame = event
    return FrameExtraction(frames, skipped_count)


def extract_renderer_frames(events):
    """Sort, filter down to the renderer process and extract the frames"""
    events = sort_events(events)
    pid = find_renderer_pid(events)
    logging.debug("Renderer main thread found in process %s", pid)
    events = filter_process(events, pid)
    extraction = extract_frames(events)
    logging.info('Extracted %d measured frames.', len(extraction.frames))
    logging.info('Skipped %d non-measured frames.', extraction.skipped_count)
    return extraction
