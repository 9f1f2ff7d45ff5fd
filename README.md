# lwsclient

This package provides client-side networking that runs on a background
service thread. Every client owns a `SocketService` (`lwsclient.service`).
A client can instead share one global service per CA file path if you pass
`use_global_thread=True`, or `use_global_service=True` for the WebSocket
client. The service thread opens connections, waits on their sockets and
sends events to your code.

There are three clients:

- `WebSocketClient` (`lwsclient.websocket_client`) for a WebSocket connection.
- `HttpClient` (`lwsclient.http_client`) for HTTP/1.1 requests. These can be synchronous or take a completion callback.
- `SocketClient` (`lwsclient.socket_client`) for a raw TCP connection.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Callbacks

The WebSocket and raw socket clients report events to an object that
subclasses `lwsclient.callback.ClientCallback`. The service thread makes
these calls:

```python
from lwsclient.callback import ClientCallback

class Printer(ClientCallback):
    def on_connected(self):
        print("connected")

    def on_disconnected(self):
        print("disconnected")

    def on_error(self, message):
        print("error:", message)       # bytes, may be empty

    def on_data(self, data, remaining):
        print("received:", data)       # bytes
```

`remaining` gives the number of bytes of the current message that are still
to come. Both clients in this package always pass `0`. The WebSocket client
delivers each message whole. The raw socket client delivers each chunk as
it is received.

## WebSocket client

```python
from lwsclient.websocket_client import WebSocketClient

client = WebSocketClient(Printer(), "wss://example.com/feed")
client.connect()
...
client.send('{"type": "subscribe"}')
client.stop()
client.close()
```

- `connect()` starts the connection in the background. If a connection already exists, it is dropped first.
- `send()` queues a message to go out as a text frame. It returns `False` if the client is not connected yet or if the message could not be queued.
- `stop()` closes the connection without calling `on_disconnected`.
- `close()` also stops the client's own service. A shared service keeps running.
- The client is also a context manager.

`parse_ws_url(url)` splits a URL into a `WsEndpoint` with the fields
`scheme`, `address`, `port` and `path`:

- A URL without a scheme is taken as `wss`.
- Without a port, the port is 80 for `ws` and 443 for anything else.
- Without a path, the path is `/`.
- A missing host, or a port that is not a number between 1 and 65535, raises `ValueError`.
- The connection uses TLS exactly when the port is 443.

## HTTP client

```python
from lwsclient.http_client import HttpClient, HttpRequest

client = HttpClient("https://example.com")

response = client.request("GET", "/status")
print(response.status, response.content_type, response.response_text)

body = HttpRequest()
body.add_header("Accept", "application/json")
body.add_body('{"name": "value"}', "application/json")
client.request("POST", "/items", body)

# asynchronous: the callback receives the HttpResponse on the service thread
client.request("GET", "/status", callback=lambda resp: print(resp.status))

client.close()
```

`parse_http_address(address)` returns `(host, port)`. The port defaults to
443 for `https://` and to 80 otherwise. A missing host or a bad port raises
`ValueError`. `HttpClient.address()` and `HttpClient.port()` return the
parsed values. TLS is used exactly when the port is 443.

Header names passed to `HttpRequest.add_header` get a trailing `:`. If the
same header is added twice, the first value is kept.

Each request opens its own connection and sends `Connection: close`. The
response body is read as far as `Content-Length` says, or from chunked
encoding, or else until the server closes the connection.

When something goes wrong, the returned `HttpResponse` describes the
failure and nothing is raised:

- If the client's service has already been closed, the response has status 500 and the text `Failed to create lws_context`.
- If the connection fails, or the body is larger than 8191 bytes, the status is 0 and `response_text` holds the request path followed by the error.

## Raw socket client

```python
from lwsclient.socket_client import SocketClient

client = SocketClient(Printer(), "example.com", 7000)
client.connect()
...
client.send(b"hello")
client.stop()
client.close()
```

After `stop()`, the service closes the socket and `on_disconnected` is called.

## Other modules

- `lwsclient.ring_buffer` holds the bounded structures that the service uses:
  - `RingBuffer` is a ring of items published in the order they were reserved.
  - `RingStringBuffer` is a queue of byte messages that can be written in chunks. The clients use it for outgoing messages; it holds up to 8192 bytes.
  - `ObjectPool` is a pool of reusable objects.
- `lwsclient.affinity.set_cpu_affinity(cpu)` pins the calling thread to a CPU on platforms that support it. All clients take a `cpu_affinity` argument and pass it to their service thread. The default `-1` leaves the thread unpinned.

## Command line

```
lwsclient [URL]
```

This command connects to a WebSocket feed. The default is
`ws-feed.pro.coinbase.com`. Once connected, it sends a subscribe message
for a few ETH products and channels. Every message it receives is logged.
Press Ctrl+C to stop it.

## What this package does not do

- It has clients only. There is no WebSocket or HTTP server.
- The WebSocket client sends only text frames.
- The HTTP client does not follow redirects and does not keep connections alive between requests.