"""
Module: tests/unit/test_mapper.py

What:
    Check both directions of the topic state mapping: labels to archived
    state, flags/labels/mailbox name to tags, and tags back to flags and
    labels.

Why:
    Inbound and outbound must agree; a mismatch makes consecutive passes undo
    each other.

How:
    Topics and mirrors live in an in-memory SQLite store; :class:`FakeProvider`
    supplies an identity ``to_tag`` and explicit reverse maps.
"""

from fakes import FakeProvider

from mailmirror.core.mapper import TopicStateMapper
from mailmirror.imap.protocol import RemoteMessage


def _mirror(store, *, archived=False, tags=(), second_post=False):
    mailbox = store.get_or_create_mailbox("INBOX", "support")
    topic = store.create_topic("Printer on fire")
    post = store.create_post(topic.id, message_id="m1", subject="s", sender="a", body="b")
    if second_post:
        post = store.create_post(topic.id, message_id="m2", subject="s", sender="a", body="b")
    incoming = store.create_incoming(mailbox.id, 1, 10, post)
    store.set_topic_archived(topic.id, archived, skip_sync=True)
    store.set_topic_tags(topic.id, tags, skip_sync=True)
    return incoming


def test_inbox_label_unarchives_topic(store, provider, logger):
    incoming = _mirror(store, archived=True)
    mapper = TopicStateMapper(provider, store, logger=logger)

    changed = mapper.apply_inbound(
        incoming, RemoteMessage(uid=10, labels=("\\Inbox",)), mailbox_name="INBOX"
    )

    assert changed
    assert store.get_topic(incoming.topic_id).archived is False


def test_missing_inbox_label_archives_topic(store, provider, logger):
    incoming = _mirror(store, archived=False)
    mapper = TopicStateMapper(provider, store, logger=logger)

    mapper.apply_inbound(incoming, RemoteMessage(uid=10, labels=()), mailbox_name="INBOX")

    assert store.get_topic(incoming.topic_id).archived is True


def test_uppercase_inbox_counts_as_inbox():
    assert TopicStateMapper.is_email_archived(["INBOX"]) is False
    assert TopicStateMapper.is_email_archived(["Work"]) is True


def test_tags_are_deduplicated_union_without_blanks(store, provider, logger):
    mapper = TopicStateMapper(provider, store, logger=logger)

    tags = mapper.inbound_tags("Work", ["seen", ""], ["Work", "Work"])

    assert set(tags) == {provider.to_tag("seen"), "Work"}
    assert tags == ["Work", "seen"]


def test_inbound_tags_replace_topic_tags(store, provider, logger):
    incoming = _mirror(store, tags=["stale"])
    mapper = TopicStateMapper(provider, store, logger=logger)

    mapper.apply_inbound(
        incoming,
        RemoteMessage(uid=10, flags=("seen",), labels=("\\Inbox",)),
        mailbox_name="INBOX",
    )

    assert store.get_topic(incoming.topic_id).tags == frozenset({"INBOX", "seen", "\\Inbox"})


def test_inbound_updates_do_not_request_outbound_sync(store, provider, logger):
    incoming = _mirror(store)
    mapper = TopicStateMapper(provider, store, logger=logger)

    mapper.apply_inbound(incoming, RemoteMessage(uid=10, labels=()), mailbox_name="INBOX")

    assert store.pending_sync(incoming.mailbox_id) == []


def test_pending_local_edit_wins_over_server_state(store, provider, logger):
    incoming = _mirror(store, archived=False)
    store.set_topic_tags(incoming.topic_id, ["urgent"])
    pending = store.find_incoming(incoming.mailbox_id, 1, 10)
    mapper = TopicStateMapper(provider, store, logger=logger)

    changed = mapper.apply_inbound(pending, RemoteMessage(uid=10, labels=()), mailbox_name="INBOX")

    topic = store.get_topic(incoming.topic_id)
    assert changed is False
    assert topic.archived is False
    assert topic.tags == frozenset({"urgent"})


def test_reply_mirrors_do_not_drive_topic_state(store, provider, logger):
    incoming = _mirror(store, archived=False, second_post=True)
    mapper = TopicStateMapper(provider, store, logger=logger)

    assert mapper.apply_inbound(incoming, RemoteMessage(uid=10, labels=()), mailbox_name="INBOX") is False
    assert store.get_topic(incoming.topic_id).archived is False


def test_missing_mirror_is_ignored(store, provider, logger):
    mapper = TopicStateMapper(provider, store, logger=logger)
    assert mapper.apply_inbound(None, RemoteMessage(uid=99), mailbox_name="INBOX") is False


def test_outbound_labels_include_inbox_for_unarchived_topic(store, logger):
    provider = FakeProvider(label_map={"work": "Work"})
    incoming = _mirror(store, archived=False, tags=["work"])
    mapper = TopicStateMapper(provider, store, logger=logger)

    labels = mapper.outbound_labels(store.get_topic(incoming.topic_id))

    assert labels == ["Work", "\\Inbox"]


def test_outbound_state_for_archived_topic(store, logger):
    provider = FakeProvider(flag_map={"seen": "\\Seen"}, label_map={"work": "Work"})
    incoming = _mirror(store, archived=True, tags=["seen", "work", "other"])
    mapper = TopicStateMapper(provider, store, logger=logger)

    flags, labels = mapper.outbound_state(store.get_topic(incoming.topic_id))

    assert flags == ["\\Seen"]
    assert labels == ["Work"]
