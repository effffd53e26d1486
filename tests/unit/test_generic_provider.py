"""
Module: tests/unit/test_generic_provider.py

What:
    Drive :class:`ImapProvider` against :class:`FakeImapBackend` to check the
    connection lifecycle, UID range filtering, response decoding, delta stores,
    tag translation and rate limiting.

Why:
    The provider is the only component that sees raw ``imapclient`` responses;
    decoding mistakes or an unfiltered ``N:*`` search would make the engine
    re-ingest messages.
"""

import pytest

from mailmirror.imap.client import ImapProvider
from mailmirror.imap.protocol import FetchField, ProviderError, RateLimitExceeded, UidRange


def test_open_mailbox_reports_uid_validity_read_only(generic_provider, imap_backend):
    imap_backend.add(1)

    status = generic_provider.open_mailbox("INBOX")

    assert imap_backend.logged_in is True
    assert (status.name, status.uid_validity, status.exists) == ("INBOX", 7, 1)
    assert imap_backend.readonly is True


def test_open_mailbox_writable(generic_provider, imap_backend):
    generic_provider.open_mailbox("INBOX", writable=True)
    assert imap_backend.readonly is False


def test_missing_uid_validity_is_a_provider_error(generic_provider, imap_backend, monkeypatch):
    monkeypatch.setattr(imap_backend, "select_folder", lambda name, readonly=False: {b"EXISTS": 0})
    with pytest.raises(ProviderError):
        generic_provider.open_mailbox("INBOX")


def test_list_uids_filters_star_range_quirk(generic_provider, imap_backend):
    for uid in (1, 2, 3):
        imap_backend.add(uid)
    generic_provider.open_mailbox("INBOX")

    assert generic_provider.list_uids(UidRange.after(3)) == []
    assert imap_backend.searches[-1] == ["UID", "4:*"]
    assert generic_provider.list_uids(UidRange(1, 2)) == [1, 2]
    assert generic_provider.list_uids() == [1, 2, 3]


def test_fetch_decodes_flags_and_reports_folder_as_label(generic_provider, imap_backend):
    imap_backend.add(5, folder="Archive", flags=[b"\\Seen", b"$Work"], body=b"raw")
    generic_provider.open_mailbox("Archive")

    messages = generic_provider.fetch([5, 6], FetchField.FULL)

    assert list(messages) == [5]
    message = messages[5]
    assert message.flags == ("\\Seen", "$Work")
    assert message.labels == ("Archive",)
    assert message.body == b"raw"
    assert imap_backend.fetches[-1][1] == ["FLAGS", "BODY.PEEK[]"]


def test_metadata_fetch_has_no_body(generic_provider, imap_backend):
    imap_backend.add(5, body=b"raw")
    generic_provider.open_mailbox("INBOX")

    message = generic_provider.fetch([5], FetchField.METADATA)[5]

    assert message.body is None
    assert message.labels == ("INBOX",)


def test_fetch_without_uids_skips_the_server(generic_provider, imap_backend):
    assert generic_provider.fetch([], FetchField.FULL) == {}
    assert imap_backend.fetches == []


def test_store_flags_sends_delta_and_keeps_recent(generic_provider, imap_backend):
    imap_backend.add(5, flags=[b"\\Seen", b"\\Recent", b"\\Draft"])
    generic_provider.open_mailbox("INBOX", writable=True)

    generic_provider.store(5, FetchField.FLAGS, ["\\Seen", "\\Recent", "\\Draft"], ["\\Seen", "\\Flagged"])

    assert imap_backend.mutations == [
        ("add_flags", [5], ["\\Flagged"]),
        ("remove_flags", [5], ["\\Draft"]),
    ]


def test_store_without_changes_sends_nothing(generic_provider, imap_backend):
    imap_backend.add(5, flags=[b"\\Seen"])
    generic_provider.open_mailbox("INBOX", writable=True)

    generic_provider.store(5, FetchField.FLAGS, ["\\Seen"], ["\\Seen", ""])

    assert imap_backend.mutations == []


def test_store_labels_is_a_no_op(generic_provider, imap_backend):
    imap_backend.add(5)
    generic_provider.open_mailbox("INBOX", writable=True)

    generic_provider.store(5, FetchField.LABELS, ["INBOX"], ["Work", "\\Inbox"])

    assert imap_backend.mutations == []


def test_store_rejects_unknown_field(generic_provider):
    with pytest.raises(ValueError):
        generic_provider.store(5, "X-UNKNOWN", [], ["a"])


@pytest.mark.parametrize(
    "name, expected",
    [
        ("\\Seen", "seen"),
        ("\\Recent", ""),
        ("[Gmail]/Sent Mail", "sent-mail"),
        ("Customer  Support!", "customer-support"),
        ("INBOX", "inbox"),
        ("a-very-long-folder-name-indeed", "a-very-long-folder-n"),
        ("", ""),
    ],
)
def test_to_tag_cleans_names(generic_provider, name, expected):
    assert generic_provider.to_tag(name) == expected


def test_reverse_translation(generic_provider):
    assert generic_provider.tag_to_flag("seen") == "\\Seen"
    assert generic_provider.tag_to_flag("flagged") == "\\Flagged"
    assert generic_provider.tag_to_flag("work") == ""
    assert generic_provider.tag_to_label("work") == ""


def test_mutations_are_rate_limited(generic_provider, imap_backend, monkeypatch):
    monkeypatch.setattr("mailmirror.imap.client.RATE_LIMIT_ACTIONS", 2)
    imap_backend.add(5)
    generic_provider.open_mailbox("INBOX", writable=True)

    generic_provider.store(5, FetchField.FLAGS, [], ["\\Seen"])
    generic_provider.store(5, FetchField.FLAGS, [], ["\\Flagged"])
    with pytest.raises(RateLimitExceeded):
        generic_provider.store(5, FetchField.FLAGS, [], ["\\Draft"])


def test_disconnect_logs_out_and_drops_client(imap_backend, imap_config, logger):
    provider = ImapProvider(imap_config, logger=logger)
    provider.connect()

    provider.disconnect()
    provider.disconnect()

    assert imap_backend.logged_out is True
    with pytest.raises(ProviderError):
        provider.client


def test_failed_login_shuts_socket_down(imap_backend, imap_config, logger):
    imap_backend.login_error = ConnectionRefusedError("denied")
    provider = ImapProvider(imap_config, logger=logger)

    with pytest.raises(ConnectionRefusedError):
        provider.connect()

    assert imap_backend.shut_down is True
    with pytest.raises(ProviderError):
        provider.client
