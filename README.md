# pbkv

A small fault-tolerant key/value store built on primary/backup replication.

Three kinds of process work together:

- **viewd**: the view service (`pbkv.viewserver`). It watches which
  storage servers are alive and publishes a numbered *view* naming one
  primary and, when one is available, one backup. It only moves to a new
  view once the primary of the current view has acknowledged it, which
  keeps at most one primary active at a time.
- **pbd**: a storage server (`pbkv.pbserver`). Each one pings the view
  service every ping interval. As primary it serves requests and forwards
  every Get, Put and Append to the backup before applying it itself. When
  a new backup joins, the primary sends it a full copy of the database.
- **pbc**: a command-line client (`pbkv.pbclerk.Clerk`). It looks up the
  current primary and retries until the operation succeeds.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Addresses

An address of the form `host:port` is a TCP endpoint. Any other string is
taken as the path of a Unix domain socket. A TCP address with port `0`
asks for a free port; the address actually bound is then available as the
server's `me` attribute.

## Running a service

Start the view service, then two storage servers, each in its own
terminal. `VIEWADDR` is the address the view service listens on;
`SERVER1` and `SERVER2` are the addresses of the storage servers.

```
viewd VIEWADDR
pbd VIEWADDR SERVER1
pbd VIEWADDR SERVER2
```

Store a value, and then read it back:

```
pbc VIEWADDR key1 value1
pbc VIEWADDR key1
```

For example, with TCP on the local machine:

```
viewd 127.0.0.1:7000
pbd 127.0.0.1:7000 127.0.0.1:7001
pbd 127.0.0.1:7000 127.0.0.1:7002
pbc 127.0.0.1:7000 key1 value1
pbc 127.0.0.1:7000 key1
```

`viewd` and `pbd` run until interrupted with Ctrl-C. `pbc` keeps retrying
until a primary answers, so it waits while no primary is available.
A key that has never been set reads as the empty string.

To see fault tolerance at work, stop a `pbd` process and start it again.
The backup takes over as primary; the restarted server joins as the new
backup and receives a copy of the data.

Usage summary (each command prints its usage and exits with status 1 when
given the wrong number of arguments):

```
viewd port
pbd viewport myport
pbc viewport key
pbc viewport key value
```

## Using it from Python

```python
from pbkv.viewserver import start_server as start_viewserver
from pbkv.pbserver import start_server
from pbkv.pbclerk import Clerk
from pbkv.viewclerk import ViewClerk

vs = start_viewserver("127.0.0.1:0")
vshost = vs.me
s1 = start_server(vshost, "127.0.0.1:0")
s2 = start_server(vshost, "127.0.0.1:0")

ck = Clerk(vshost, "")
ck.put("greeting", "hello")
ck.append("greeting", ", world")
print(ck.get("greeting"))           # hello, world

view = ViewClerk("", vshost).get()  # View(viewnum, primary, backup)

s1.kill()
s2.kill()
vs.kill()
```

`Clerk` caches the current view and asks the view service again only when
the primary cannot be reached or refuses a request. Each request carries
a random identifier from `pbkv.pbclerk.nrand()`; servers remember it to
detect retransmitted requests, so a retried `append` is applied only once.

`ViewClerk.ping` and `ViewClerk.get` raise `ConnectionError` when the view
service cannot be reached; `ViewClerk.primary` returns `""` instead.

`PBServer.set_unreliable(True)` makes a server drop some incoming
connections, or process them without replying, which is useful for
exercising the client's retries.

## Wire format

`pbkv.rpc` carries one request per connection: a single line of JSON
`{"method": ..., "args": {...}}`, answered by one line holding either
`{"reply": {...}}` or `{"error": "..."}`. `pbkv.rpc.call` raises
`ConnectionError` on failure to connect, a missing reply, or an error.

## Timing

Servers ping the view service once every ping interval (100 ms). A server
that misses five pings in a row counts as dead. A primary that restarts
and pings with view number 0 is also treated as having failed. Only the
backup of the current view can be promoted, so a fresh server never
becomes primary while an initialised one exists, and the view does not
change at all until the current primary has acknowledged it.

## What it does not do

- Data is held in memory only. Nothing is written to disk, so if the
  primary and the backup both fail, the data is lost.
- The view service is a single process and is not itself replicated.
- There is one backup at most; further servers wait idle until needed.