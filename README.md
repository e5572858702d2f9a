# servercore

Building blocks for the core of a server process, in plain Python with no
dependencies beyond the standard library.

## Modules

- `servercore.buffers`
  - `BufferReader` and `BufferWriter` are bounded cursors over byte buffers. They offer `read`/`peek`/`unpack` and `write`/`reserve`/`pack`, and raise `BufferError` when data or room runs out.
  - `RecvBuffer` holds separate read and write cursors and compacts itself in `clean()`.
- `servercore.locks`
  - `RWLock` is a reader/writer lock whose write side is re-entrant. It has `write_locked` and `read_locked` context managers, and it can report every acquisition to a `DeadLockProfiler`.
  - `DeadLockProfiler` raises `DeadlockError` when the order in which named locks are taken forms a cycle. It raises `LockError` when locks are released wrongly.
  - `SpinLock`, `EventLock` and `SharedLock` are smaller locks.
  - `read_guard` and `write_guard` are context managers that work with any of these locks.
- `servercore.console`: `ConsoleLog.write_stdout` and `ConsoleLog.write_stderr` write printf-style messages in a `Color`. The colour codes are written only when the stream is a terminal.
- `servercore.jobs`
  - `Job` binds a callable to its arguments.
  - `JobQueue` runs its jobs one at a time. It has `do_async` and `do_timer`.
  - `GlobalQueue` holds the queues that are waiting for a worker.
  - `JobTimer` holds timed jobs until they are due.
  - `LockQueue` is a thread-safe FIFO.
  - `ThreadManager` launches worker threads and drives the global queue and the timer.
  - `TickRunner` calls an update function at a fixed interval.
  - `tick_count()` returns monotonic milliseconds.
- `servercore.web`
  - `parse_request` turns raw text or bytes into an `HttpRequest`.
  - `ControllerRegistry` maps a method and a path to a handler.
  - `HttpDispatcher` calls the matching handler, or answers 404.
  - `HttpController` is the base class for a group of routes. `HelloController` is a sample with `GET /hello`, `POST /echo` and `GET /json`.
- `servercore.dbmodel`
  - `Table`, `Column`, `Index` and `Procedure` describe a SQL Server schema and generate the SQL fragments for it.
  - `DataType` and `IndexType` are the enumerations the model uses.
  - `string_to_data_type`, `data_type_to_string` and `remove_whitespace` are helpers.
- `servercore.schema_diff`: `SchemaDiff.compare(xml_tables, db_tables, removed_tables, xml_procedures, db_procedures)` compares the wanted schema with the one found in a database. It returns the update queries ordered by `UpdateStep`.
- `servercore.network`
  - asyncio `Session` and `PacketSession` serve one connection each.
  - `ServerService` listens for connections and `ClientService` opens them.
  - `Service` is the shared base class. It keeps the sessions and offers `broadcast`.
  - Packets are framed as `[size][id][payload]`. `PacketHeader` and `split_packets` handle that framing.

## Install

```
pip install .
pip install ".[test]"   # with the test tools
```

## Examples

```python
from servercore.buffers import BufferReader, BufferWriter

buf = bytearray(4)
BufferWriter(buf).pack("<HH", 4, 1000)
size, packet_id = BufferReader(bytes(buf)).unpack("<HH")  # (4, 1000)
```

```python
from servercore.web import ControllerRegistry, HelloController, HttpDispatcher, parse_request

registry = ControllerRegistry()
registry.register_controller(HelloController())
response = HttpDispatcher(registry).dispatch(parse_request("GET /hello HTTP/1.1\r\n\r\n"))
print(response.body)  # Hello, IOCP HTTP!
```

```python
from servercore.dbmodel import Column, DataType, Table
from servercore.schema_diff import SchemaDiff

wanted = Table(name="Gold", columns=[Column(name="id", type=DataType.INT, type_text="int")])
queries = SchemaDiff().compare([wanted], [])
# ['CREATE TABLE [dbo].[Gold] (\n\t[id] int NOT NULL )']
```

## What it does not do

- It does not read schema definitions from XML files.
- It does not connect to a database or run queries. `SchemaDiff` only produces the queries. You gather the tables and procedures that a database holds, and you execute what `SchemaDiff` returns.
- It has no command-line program. The services run inside your own asyncio program.

## Tests

```
pytest
```