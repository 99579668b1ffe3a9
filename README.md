# svcproxy

Building blocks for a node-local service proxy. A proxy client receives a
stream of operations (set, delete, sync) that describe Kubernetes-style
services and their endpoints. `svcproxy` turns that stream into a usable view,
reports what changed, and provides pieces for building proxy rules.

## What is inside

- `svcproxy.model`: services, endpoints, IP sets, port mappings, the
  operations a sink receives (`OpSet`, `OpDelete`, `OpSync`), the `Sink`
  protocol and `Config` (node name, defaulting to the host name). Services
  and endpoints are encoded with `to_bytes()` and decoded with `from_bytes()`.
- `svcproxy.xxhash64`: pure-Python XXH64 digest (`xxh64`, `xxh64_str`).
- `svcproxy.diffstore2`: a keyed store that tracks what was created, updated
  or deleted between two fill passes. The values can be text buffers
  (`BufferLeaf`), arbitrary values (`AnyLeaf`) or JSON-hashed values
  (`JSONLeaf`).
- `svcproxy.diffstore`: a byte-keyed, prefix-aware store (`DiffStore`) that
  also tracks changed and deleted entries.
- `svcproxy.fullstate`: `FullStateSink` keeps the whole state. On each sync
  it hands every service, with its endpoints, to a callback.
- `svcproxy.pipe`: `Pipe` fans the full state out to several stages, run in
  sequence (`Strategy.SEQUENCE`), in parallel (`Strategy.PARALLEL`), or in
  parallel with their streams closed one after the other
  (`Strategy.PARALLEL_SEND_SEQUENCE_CLOSE`).
- `svcproxy.filterreset`: `FilterResetSink` hides redundant updates when a
  stream is replayed after a reset, and emits deletions for whatever
  disappeared at the next sync.
- `svcproxy.decoder`: `DecoderSink` turns operations into `set_service`,
  `delete_service`, `set_endpoint`, `delete_endpoint` and `sync` calls on a
  backend.
- `svcproxy.serviceevents`: `ServicesListener` turns service updates into
  port, IP, IP-port, traffic-policy and session-affinity events; `wrap()`
  attaches it to a decoder backend that implements those listeners.
- `svcproxy.conntrack`: `Conntrack` is a full-state callback that works out
  which UDP and SCTP flows disappeared and clears their entries by running
  the `conntrack` program (or a runner you pass in).
- `svcproxy.backendcmd`: a registry of named backend factories
  (`register`, `registered`).
- `svcproxy.nft.rules`: nftables rule fragments: `DnatRule`,
  `protocol_match`, `vmap_add` and `nft_key`.
- `svcproxy.nft.table`: `NfTable`, an nftables table whose chains, maps and
  sets are change-tracked stores.
- `svcproxy.userspace.roundrobin`: `LoadBalancerRR`, a round-robin load
  balancer with client-IP session affinity.
- `svcproxy.userspace.service`: `ProxyService`, endpoint bookkeeping for a
  service.

## Installing

The package needs Python 3.10 or later and has no runtime dependencies. To
run its test suite, install the `test` extra and run `pytest`.

## Tracking changes between passes

```python
from svcproxy.diffstore2 import new_buffer_store

store = new_buffer_store()

store.get("a").write("hello a")
store.done()
print(store.format_diff())   # "a" is reported as created

store.reset()
store.get("a").write("hi a")
store.get("b").write("hello b")
store.done()
for item in store.changed():
    print(item.key, "created" if item.created() else "updated")
```

Each pass goes through the same steps:

1. Call `reset()`.
2. Fill the values you still want.
3. Call `done()`.
4. Ask for `changed()`, `deleted()` or `has_changes()`.

A key you did not touch during a pass is reported as deleted. Asking for
changes before `done()` raises `RuntimeError`.

## Receiving the full state

```python
from svcproxy.fullstate import FullStateSink, array_callback
from svcproxy.model import Config

def apply(services):
    for seps in services:
        print(seps.service.namespaced_name(), len(seps.endpoints))

sink = FullStateSink(Config(node_name="node-1"))
sink.callback = array_callback(apply)
```

Feed the operations you receive to `sink.send(op)`. When an `OpSync` arrives,
the callback gets every service, in path order, each followed by its
endpoints.

## Round-robin load balancing

```python
from svcproxy.model import Endpoint, IPSet, PortMapping, Protocol, Service
from svcproxy.userspace.roundrobin import LoadBalancerRR, ServicePortName

lb = LoadBalancerRR()
svc = Service(
    namespace="default",
    name="web",
    ports=[PortMapping(name="http", protocol=Protocol.TCP, port=80, target_port=8080)],
)
lb.on_endpoints_add(Endpoint(ips=IPSet(v4=["10.1.0.1"])), svc)
lb.on_endpoints_add(Endpoint(ips=IPSet(v4=["10.1.0.2"])), svc)

port = ServicePortName("default", "web", "http")
print(lb.next_endpoint(port, None, False))
```

`next_endpoint` raises `MissingServiceEntryError` if the service port is
unknown and `MissingEndpointsError` if it has no endpoints.

## What this package does not do

- It does not connect to a proxy server: there is no client that fetches the
  operation stream, and no command-line program. You feed operations to the
  sinks yourself.
- It does not render a complete nftables ruleset from services nor apply one
  with `nft`; `svcproxy.nft` only provides rule fragments and change-tracked
  tables to build one.
- It does not proxy traffic: the load balancer picks endpoints, but no
  sockets are opened or forwarded.
- `svcproxy.backendcmd` starts out empty; no backend registers itself.