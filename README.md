# miracle

Building blocks for Wifi-Display (Miracast) tooling on Linux:

- **`miracle.bus`**: a datagram bus over Unix sockets that speaks the
  wpa_supplicant control protocol, as a client (`open_client`) or as a
  server (`create_server`), driven by a small selector-based `EventLoop`.
- **`miracle.message`**: `WpasMessage`, the requests, replies and events
  that travel on that bus, with typed append/read helpers and
  `parse_message` for received datagrams.
- **`miracle.uibc`**: encoders for UIBC (User Input Back Channel) generic
  input packets (touch, key, zoom, scroll, rotate) and the
  `miracle-uibcctl` command that sends them over TCP.
- **`miracle.strutil`**: strict unsigned-integer parsing, quoted-string
  tokenizing and joining, `mkdir_p`, a monotonic clock in microseconds
  (`now_usec`) and a `RateLimit`.
- **`miracle.util`**: small helpers such as `reformat_mac` and
  `load_ini_file`, which reads `~/.config/miraclecastrc` or
  `~/.miraclecast`.

The package needs nothing beyond the Python standard library and runs on
Python 3.10 or later.

## Installing

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Talking to wpa_supplicant

```python
from miracle.bus import EventLoop, open_client
from miracle.message import new_request

loop = EventLoop()
client = open_client("/run/wpa_supplicant/wlan0")
client.attach_event(loop, 0)

def on_reply(bus, reply):
    print("ok" if reply.is_ok() else "failed")
    loop.exit(0)

request = new_request(client, "P2P_FIND")
client.call_async(request, on_reply)
loop.loop()
client.close()
```

A queued message that is not sent or answered within its timeout
(half a second by default) makes the bus give up on the connection.

Messages are built with a type string, one letter per argument:
`s` a string, `i` a signed 32-bit integer, `u` an unsigned 32-bit
integer, and `e` a `key=value` pair (two values):

```python
message = new_request(client, "SET")
message.append("se", "device_name", "key", "value")
message.seal()
message.raw      # 'SET device_name key=value'
```

Unsolicited events and requests arriving on the socket are handed to
callbacks registered with `add_match`; a callback returning a true value
stops the ones after it. Every callback is also called with `None` once
the connection is lost.

## Sending UIBC input

`miracle-uibcctl` connects to a host and port over TCP and reads one
event per line from standard input:

```
miracle-uibcctl <hostname> <port>
```

Lines starting with `0` or `1` are touch events in the form
`type,count,id,x,y[,id,x,y...]`; lines starting with `3` or `4` are key
events in the form `type,0xKEY1,0xKEY2`. Other lines are ignored.

The packet encoders can also be used directly:

```python
from miracle.uibc import touch_packet, binarydump

packet = touch_packet("0,1,0,100,200", 1.0, 1.0)
print(binarydump(packet.data))
```

## Parsing and quoting helpers

```python
from miracle.strutil import parse_unsigned, qstr_join, qstr_tokenize

parse_unsigned("0x1f", 0, 2**32 - 1)     # (31, 4): value and end index
qstr_tokenize('a "b c" d')               # ['a', 'b c', 'd']
qstr_join(["a", "b c"])                  # 'a "b c"'
```

## What this package does not do

It does not manage Wi-Fi interfaces or P2P links, run a DHCP client or
server, or negotiate RTSP streaming sessions. It provides the control
socket protocol for wpa_supplicant and the UIBC input encoder; a full
Wifi-Display source or sink has to be built on top of them.