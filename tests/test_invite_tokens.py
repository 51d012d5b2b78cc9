"""Tests for invite token generation and resolution."""

from datetime import timedelta

from services.realtime.invite_tokens import DEFAULT_BASE_URL, InviteTokenStore


class TestInviteTokenStore:
    """Token minting, lookup and revocation."""

    def test_tokens_are_64_hex_chars_and_unique(self, invites):
        tokens = {invites.generate("s1") for _ in range(200)}
        assert len(tokens) == 200
        for token in tokens:
            assert len(token) == 64
            int(token, 16)

    def test_many_tokens_resolve_to_same_session(self, invites):
        first, second = invites.generate("s1"), invites.generate("s1")
        assert invites.validate(first) == "s1"
        assert invites.validate(second) == "s1"

    def test_unknown_token(self, invites):
        assert invites.validate("deadbeef") is None

    def test_tokens_do_not_expire_by_default(self, clock):
        store = InviteTokenStore(clock=clock)
        token = store.generate("s1")
        clock.advance(days=365)
        assert store.validate(token) == "s1"

    def test_ttl_expires_token(self, clock):
        store = InviteTokenStore(ttl=timedelta(hours=1), clock=clock)
        token = store.generate("s1")
        clock.advance(minutes=59)
        assert store.validate(token) == "s1"
        clock.advance(minutes=1)
        assert store.validate(token) is None
        assert len(store) == 0

    def test_cap_keeps_newest_tokens(self):
        store = InviteTokenStore(max_per_session=2)
        oldest = store.generate("s1")
        middle = store.generate("s1")
        newest = store.generate("s1")
        other = store.generate("s2")
        assert store.validate(oldest) is None
        assert store.validate(middle) == "s1"
        assert store.validate(newest) == "s1"
        assert len(store) == 3
        assert store.validate(other) == "s2"

    def test_revoke_single_token(self, invites):
        gone, kept = invites.generate("s1"), invites.generate("s1")
        invites.revoke(gone)
        invites.revoke("never-issued")
        assert invites.validate(gone) is None
        assert invites.validate(kept) == "s1"

    def test_revoke_session(self, invites):
        revoked = [invites.generate("s1"), invites.generate("s1")]
        keep = invites.generate("s2")
        assert invites.revoke_session("s1") == 2
        assert [invites.validate(token) for token in revoked] == [None, None]
        assert invites.validate(keep) == "s2"


class TestInviteLinks:
    """Link building and parsing."""

    def test_default_base_url(self, invites):
        link = invites.build_link("s1")
        assert link.startswith(f"{DEFAULT_BASE_URL}/join/")

    def test_trailing_slash_is_not_doubled(self, invites):
        link = invites.build_link("s1", "https://example.com/")
        assert "//join" not in link

    def test_link_resolves_back_to_session(self, invites):
        link = invites.build_link("s1", "https://example.com/app")
        assert invites.validate(link.rsplit("/", 1)[-1]) == "s1"
