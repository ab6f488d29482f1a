# Copyright 2019 WebPageTest LLC.
# Copyright 2017 Google Inc.
# Copyright 2020 Catchpoint Systems Inc.
# Use of this source code is governed by the Polyform Shield 1.0.0 license that can be
# found in the LICENSE.md file.
"""Main entry point for interfacing with Chrome's remote debugging protocol"""
import logging
import threading
import time
from time import monotonic
try:
    import ujson as json
except BaseException:
    import json
from ws4py.client.threadedclient import WebSocketClient


class DevToolsError(Exception):
    """The browser returned an error for a dev tools command"""
    def __init__(self, message, response=None):
        Exception.__init__(self, message)
        self.response = response


class DevToolsTimeout(DevToolsError):
    """No response to a dev tools command in time"""


class DevTools(object):
    """Interface into Chrome's remote dev tools protocol"""
    def __init__(self, port, url_prefix='http://localhost'):
        self.url = "http://localhost:{0:d}/json/list".format(port)
        self.url_prefix = url_prefix
        self.must_exit = False
        self.websocket = None
        self.tab = None
        self.command_id = 0
        self.command_responses = {}
        self.pending_commands = []
        self.listeners = []
        self.lock = threading.Lock()
        self.responses_changed = threading.Condition(self.lock)

    def shutdown(self):
        """Stop any pending waits"""
        self.must_exit = True
        with self.responses_changed:
            self.responses_changed.notify_all()

    def find_tab(self, tabs):
        """Pick the single page tab that is serving the benchmark"""
        matches = []
        for tab in tabs:
            if tab.get('type', 'page') == 'page' and 'webSocketDebuggerUrl' in tab and \
                    tab.get('url', '').startswith(self.url_prefix):
                matches.append(tab)
        if len(matches) > 1:
            raise DevToolsError('Expected one tab with a url starting with {0} but found {1:d}'.format(
                self.url_prefix, len(matches)))
        return matches[0] if matches else None

    def connect(self, timeout):
        """Connect to the browser"""
        import requests
        session = requests.session()
        proxies = {"http": None, "https": None}
        end_time = monotonic() + timeout
        while self.websocket is None and monotonic() < end_time and not self.must_exit:
            tab = None
            try:
                response = session.get(self.url, timeout=timeout, proxies=proxies)
                if len(response.text):
                    tabs = response.json()
                    logging.debug("Dev Tools tabs: %s", json.dumps(tabs))
                    tab = self.find_tab(tabs)
            except requests.exceptions.RequestException as err:
                logging.debug("Connect to dev tools Error: %s", err.__str__())
            if tab is None:
                time.sleep(0.5)
                continue
            websocket_url = tab['webSocketDebuggerUrl']
            logging.debug('Connecting to DevTools: %s', websocket_url)
            try:
                websocket = DevToolsClient(websocket_url, self.process_message)
                websocket.connect()
            except Exception as err:
                logging.exception("Connect to dev tools websocket Error: %s", err.__str__())
                time.sleep(0.5)
                continue
            self.websocket = websocket
            self.tab = tab
            logging.info('Connected to Chrome tab: %s (%s)', tab.get('title'), tab.get('url'))
        if self.websocket is None:
            raise DevToolsTimeout('Timed out connecting to dev tools at {0}'.format(self.url))
        return self.websocket

    def close(self):
        """Disconnect from the browser"""
        self.shutdown()
        if self.websocket is not None:
            try:
                self.websocket.close()
            except Exception:
                logging.exception('Error closing the dev tools websocket')
            self.websocket = None

    def add_listener(self, listener):
        """Subscribe to dev tools notifications: listener(method, params)"""
        with self.lock:
            self.listeners.append(listener)

    def remove_listener(self, listener):
        """Unsubscribe a notification listener"""
        with self.lock:
            if listener in self.listeners:
                self.listeners.remove(listener)

    def process_message(self, msg):
        """Process an inbound dev tools message (on the websocket thread)"""
        if 'id' in msg:
            with self.responses_changed:
                response_id = msg['id']
                if response_id in self.pending_commands:
                    self.pending_commands.remove(response_id)
                    self.command_responses[response_id] = msg
                    self.responses_changed.notify_all()
        elif 'method' in msg:
            with self.lock:
                listeners = list(self.listeners)
            params = msg.get('params', {})
            for listener in listeners:
                try:
                    listener(msg['method'], params)
                except Exception:
                    logging.exception('Error processing dev tools event %s', msg['method'])

    def send_command(self, method, params=None, wait=True, timeout=30):
        """Send a raw dev tools message and optionally wait for the response"""
        if self.websocket is None:
            raise DevToolsError('Not connected to dev tools')
        with self.lock:
            self.command_id += 1
            command_id = int(self.command_id)
            if wait:
                self.pending_commands.append(command_id)
        msg = {'id': command_id, 'method': method, 'params': params if params is not None else {}}
        out = json.dumps(msg)
        logging.debug("-> %s", out[:1000])
        self.websocket.send(out)
        if not wait:
            return None
        end_time = monotonic() + timeout
        with self.responses_changed:
            while command_id not in self.command_responses and not self.must_exit:
                remaining = end_time - monotonic()
                if remaining <= 0:
                    break
                self.responses_changed.wait(remaining)
            ret = self.command_responses.pop(command_id, None)
            if ret is None and command_id in self.pending_commands:
                self.pending_commands.remove(command_id)
        if ret is None:
            raise DevToolsTimeout('Timed out waiting for a response to {0}'.format(method))
        if 'error' in ret:
            raise DevToolsError('{0} failed: {1}'.format(method, json.dumps(ret['error'])), ret)
        return ret


class DevToolsClient(WebSocketClient):
    """DevTools WebSocket client"""
    def __init__(self, url, on_message, protocols=None, extensions=None, heartbeat_freq=None,
                 ssl_options=None, headers=None):
        WebSocketClient.__init__(self, url, protocols, extensions, heartbeat_freq,
                                 ssl_options, headers)
        self.connected = False
        self.on_message = on_message

    def opened(self):
        """WebSocket interface - connection opened"""
        logging.debug("DevTools websocket connected")
        self.connected = True

    def closed(self, code, reason=None):
        """WebSocket interface - connection closed"""
        logging.debug("DevTools websocket disconnected")
        self.connected = False

    def received_message(self, raw):
        """WebSocket interface - message received"""
        try:
            if raw.is_text:
                message = raw.data.decode(raw.encoding) if raw.encoding is not None else raw.data
                if message.find('"Tracing.dataCollected') == -1:
                    logging.debug('<- %s', message[:200])
                self.on_message(json.loads(message))
        except Exception:
            logging.exception('Error processing received websocket message')
