# raftkv

This is a small model of the Raft consensus algorithm that runs in a single
process. It drives a replicated key-value store.

The package has two modules:

- `raftkv.core_types` holds the node, its log and the RPC message types.
- `raftkv.simulation` runs a handful of nodes over a simulated network.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running the simulation

```
raftkv-sim
```

By default this starts a three-node cluster with ids 1, 2 and 3. It runs the
cluster for 100 ticks and sleeps 0.05 seconds between ticks.

On each tick, every server checks its election timer. A follower whose timer has
run out becomes a candidate. A candidate whose timer has run out starts an
election: it increments its term, votes for itself and resets its timer. It then
sends a `RequestVoteArgs` to every other server. The messages are delivered, and
the receivers grant or refuse their votes. After delivery, the simulation prints
one summary line per server, for example:

```
S1: Term=1, State=Candidate, LogLen=0, Commit=0, Applied=0, VotedFor=1
```

Options:

- `--ticks N`: the number of rounds to run. It must not be negative.
- `--interval SECONDS`: the pause between rounds. It must not be negative.
- `--peers ID [ID ...]`: the ids of the cluster members.
- `--verbose`: also show each node's own log messages, such as timer resets,
  votes and log changes.

## Using the library

```python
from raftkv.core_types import (
    AppendEntriesArgs, DeleteCommand, LogEntry, NodeState, Server, SetCommand,
)

follower = Server(2)
reply = follower.handle_append_entries(
    AppendEntriesArgs(
        term=1,
        leader_id=1,
        prev_log_index=0,
        prev_log_term=0,
        entries=[
            LogEntry(term=1, command=SetCommand(key="a", value="1")),
            LogEntry(term=1, command=DeleteCommand(key="a")),
        ],
        leader_commit=1,
    )
)
assert reply.success
follower.apply_committed_entries()
assert follower.kv_store == {"a": "1"}
assert follower.state is NodeState.FOLLOWER
```

### `Server`

Log indices are 1-based, and index 0 means "no entry". A `Server` takes an
optional `clock` callable, which defaults to `time.monotonic`. The clock sets
the election deadline. That deadline is the current time plus 1.5 times
`election_timeout_base`, which defaults to 0.150 s.

The server has these methods:

- `tick(peers)` advances the node's timers and applies any committed entries.
  It returns a list of `(peer_id, message)` pairs to send.
- `handle_request_vote(args)` answers a `RequestVoteArgs` with a
  `RequestVoteReply`.
  - It refuses a candidate whose term is older.
  - It adopts a newer term.
  - It grants the vote only when the server has not voted for someone else and
    the candidate's log is at least as up to date as its own.
- `handle_append_entries(args)` answers an `AppendEntriesArgs` with an
  `AppendEntriesReply`.
  - It rejects older terms and log mismatches at `prev_log_index`.
  - It truncates conflicting entries, appends new ones, and advances
    `commit_index` up to `leader_commit`.
- `apply_committed_entries()` applies entries up to `commit_index` to
  `kv_store`. `SetCommand` stores a value and `DeleteCommand` removes a key.
- `reset_election_timer()` moves the election deadline one timeout ahead.

### `raftkv.simulation`

- `run_simulation(peer_ids, ticks, tick_interval)` runs a cluster and returns
  its servers.
- `deliver(servers, messages)` routes `(sender, receiver, message)` triples to
  their servers. It returns the replies as `(server id, reply)` pairs and drops
  messages for unknown ids.
- `server_summary(server)` and `server_details(label, server)` format a server's
  state as text.
- `main(argv=None)` is the entry point behind `raftkv-sim`.

## What it does not do

This is a teaching model, not a working store:

- **No leader is elected.** Replies to vote requests are never handed back to
  the candidates, and nothing counts votes.
- **No heartbeats or replication.** A leader's tick sends nothing, so followers
  only receive `AppendEntriesArgs` when you build them yourself.
- **No client interface.** There is nothing that accepts client commands.
- **No persistence.** Nothing is written to disk.
- **No real network.** All nodes live in one process, and messages are passed
  directly between them.