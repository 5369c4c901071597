import pytest

from raftkv.core_types import (
    AppendEntriesArgs,
    AppendEntriesReply,
    DeleteCommand,
    LogEntry,
    NodeState,
    RequestVoteArgs,
    RequestVoteReply,
    Server,
    SetCommand,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def server(clock):
    return Server(1, clock=clock)


def entry(term, key, value="v"):
    return LogEntry(term, SetCommand(key, value))


def test_new_server_defaults(server, clock):
    assert server.state is NodeState.FOLLOWER
    assert server.current_term == 0
    assert server.voted_for is None
    assert server.log == []
    assert server.commit_index == 0 and server.last_applied == 0
    assert server.kv_store == {}
    timeout = server.election_timeout_due - clock.now
    assert server.election_timeout_base < timeout < 2 * server.election_timeout_base


def test_tick_before_timeout_does_nothing(server):
    assert server.tick([2, 3]) == []
    assert server.state is NodeState.FOLLOWER


def test_follower_times_out_to_candidate_then_starts_election(server, clock):
    clock.now += 1.0
    assert server.tick([2, 3]) == []
    assert server.state is NodeState.CANDIDATE
    assert server.current_term == 0

    messages = server.tick([1, 2, 3])
    assert server.current_term == 1
    assert server.voted_for == 1
    assert [target for target, _ in messages] == [2, 3]
    for _, msg in messages:
        assert msg == RequestVoteArgs(term=1, candidate_id=1, last_log_index=0, last_log_term=0)
    assert server.election_timeout_due > clock.now


def test_election_carries_last_log_position(server, clock):
    server.log = [entry(1, "a"), entry(2, "b")]
    server.state = NodeState.CANDIDATE
    clock.now += 1.0
    messages = server.tick([2])
    assert messages[0][1].last_log_index == len(server.log)
    assert messages[0][1].last_log_term == server.log[-1].term


def test_reset_election_timer_moves_deadline(server, clock):
    before = server.election_timeout_due
    clock.now += 5.0
    server.reset_election_timer()
    assert server.election_timeout_due == pytest.approx(before + 5.0)


def test_append_entries_rejects_stale_term(server):
    server.current_term = 3
    reply = server.handle_append_entries(AppendEntriesArgs(2, 9, 0, 0))
    assert reply == AppendEntriesReply(term=3, success=False)
    assert server.current_term == 3


def test_append_entries_newer_term_makes_follower(server):
    server.state = NodeState.CANDIDATE
    server.voted_for = 1
    reply = server.handle_append_entries(AppendEntriesArgs(5, 2, 0, 0))
    assert reply == AppendEntriesReply(term=5, success=True)
    assert server.state is NodeState.FOLLOWER
    assert server.voted_for is None


def test_append_entries_same_term_candidate_steps_down(server):
    server.current_term = 2
    server.state = NodeState.CANDIDATE
    server.voted_for = 1
    reply = server.handle_append_entries(AppendEntriesArgs(2, 2, 0, 0))
    assert reply.success
    assert server.state is NodeState.FOLLOWER
    assert server.voted_for == 1


def test_append_entries_missing_prev_entry(server):
    reply = server.handle_append_entries(AppendEntriesArgs(1, 2, 3, 1, [entry(1, "x")]))
    assert reply == AppendEntriesReply(term=1, success=False)
    assert server.log == []


def test_append_entries_prev_term_mismatch(server):
    server.log = [entry(1, "a")]
    reply = server.handle_append_entries(AppendEntriesArgs(2, 2, 1, 2, [entry(2, "b")]))
    assert reply.success is False
    assert server.log == [entry(1, "a")]


def test_append_entries_appends_and_commits(server):
    new = [entry(1, "a", "1"), entry(1, "b", "2")]
    reply = server.handle_append_entries(AppendEntriesArgs(1, 2, 0, 0, new, leader_commit=10))
    assert reply.success
    assert server.log == new
    assert server.commit_index == len(new)


def test_append_entries_is_idempotent(server):
    new = [entry(1, "a"), entry(1, "b")]
    server.handle_append_entries(AppendEntriesArgs(1, 2, 0, 0, new))
    server.handle_append_entries(AppendEntriesArgs(1, 2, 0, 0, new))
    assert server.log == new


def test_append_entries_truncates_conflict(server):
    server.current_term = 1
    server.log = [entry(1, "a"), entry(1, "b"), entry(1, "c")]
    replacement = entry(2, "x")
    reply = server.handle_append_entries(AppendEntriesArgs(2, 2, 1, 1, [replacement]))
    assert reply.success
    assert server.log == [entry(1, "a"), replacement]


def test_apply_set_and_delete(server):
    server.log = [
        entry(1, "k", "v1"),
        entry(1, "j", "v2"),
        LogEntry(1, DeleteCommand("k")),
    ]
    server.commit_index = 3
    server.apply_committed_entries()
    assert server.last_applied == 3
    assert server.kv_store == {"j": "v2"}


def test_apply_halts_past_end_of_log(server):
    server.log = [entry(1, "k", "v")]
    server.commit_index = 4
    server.apply_committed_entries()
    assert server.last_applied == 1
    assert server.kv_store == {"k": "v"}


def test_tick_applies_committed_entries(server):
    server.handle_append_entries(
        AppendEntriesArgs(1, 2, 0, 0, [entry(1, "color", "blue")], leader_commit=1)
    )
    server.tick([2, 3])
    assert server.kv_store == {"color": "blue"}
    assert server.last_applied == server.commit_index


def test_request_vote_stale_term_rejected(server):
    server.current_term = 4
    reply = server.handle_request_vote(RequestVoteArgs(3, 2, 0, 0))
    assert reply == RequestVoteReply(term=4, vote_granted=False)
    assert server.voted_for is None


def test_request_vote_newer_term_granted(server):
    server.state = NodeState.CANDIDATE
    server.voted_for = 1
    reply = server.handle_request_vote(RequestVoteArgs(1, 2, 0, 0))
    assert reply == RequestVoteReply(term=1, vote_granted=True)
    assert server.voted_for == 2
    assert server.state is NodeState.FOLLOWER


def test_request_vote_already_voted_for_other(server):
    server.current_term = 1
    server.voted_for = 3
    reply = server.handle_request_vote(RequestVoteArgs(1, 2, 0, 0))
    assert reply.vote_granted is False
    assert server.voted_for == 3


def test_request_vote_same_candidate_again(server):
    first = server.handle_request_vote(RequestVoteArgs(1, 2, 0, 0))
    second = server.handle_request_vote(RequestVoteArgs(1, 2, 0, 0))
    assert first.vote_granted and second.vote_granted