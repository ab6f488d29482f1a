# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Cross-platform support for os-level things that differ on different platforms"""
import logging
import os
import platform
import shutil

MAC_CHROME_PATH = '/Applications/Google Chrome.app/Contents/MacOS/Google Chrome'


class ChromeLaunchError(Exception):
    """Chrome could not be found or started"""


def find_chrome_executable(environ=None):
    """Locate the system Chrome install.

    CHROME_EXECUTABLE overrides the platform default (some CI bots install
    Chrome in a non-standard location)."""
    if environ is None:
        environ = os.environ
    exe = environ.get('CHROME_EXECUTABLE')
    if exe:
        return exe
    plat = platform.system()
    if plat == "Linux":
        exe = shutil.which('google-chrome')
        if exe is None:
            raise ChromeLaunchError('Failed to locate system Chrome installation.')
        return exe
    elif plat == "Darwin":
        return MAC_CHROME_PATH
    raise ChromeLaunchError('Web benchmarks cannot run on {0} yet.'.format(plat))


def kill_process_tree(pid, timeout=10):
    """Terminate a process and all of its children (gently at first)"""
    import psutil
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    processes = parent.children(recursive=True)
    processes.append(parent)
    logging.debug("Terminating %d processes for pid %d", len(processes), pid)
    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        logging.debug("Killing process %d", proc.pid)
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
