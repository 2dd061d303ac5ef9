"""
SnipSafe Backend — Snippet Endpoint Tests
===========================================

What:  The /api/snippets surface end to end: HTTP → dependencies → services →
       in-memory SQLite, through httpx's ASGITransport.
Why:   Status codes are part of the contract: 403 and 404 decide what a caller
       learns about snippets they cannot read.
How:   Users and snippets come from the make_user and make_snippet fixtures; tokens
       are minted with auth_headers.
When:  Run on every commit.

What we test:
    ✅ Private snippets never leak their body by id to non-owners
    ✅ Share links: same organization reads private, other organizations get 403,
       anonymous callers read public
    ✅ Soft-deleted snippets are not found, even for the owner
    ✅ Edit grants allow content updates, not visibility changes; others cannot update
    ✅ Sharing is a three-way report; repeat grants are absorbed
    ✅ /share and /sharing list the same grants, to the owner only
    ✅ Presence keeps one entry per viewer; leave-view hides snippets the caller can't see
    ✅ Listings, search and stats stay inside the caller's organization
"""

import uuid

import pytest

from conftest import auth_headers

API = "/api/snippets"


def new_snippet(**overrides):
    body = {
        "title": "Binary search",
        "content": "def bsearch(xs, x):\n    ...",
        "language": "python",
        "visibility": "private",
        "tags": ["algorithms"],
    }
    body.update(overrides)
    return body


class TestCreate:
    """Tests for POST /api/snippets."""

    @pytest.mark.asyncio
    async def test_create_snippet(self, client, make_user):
        """Creating a snippet should return it with its author, organization and share id."""
        alice = await make_user("alice")

        response = await client.post(
            API,
            json=new_snippet(language="Python", tags=["algo", "algo", " search ", ""]),
            headers=auth_headers(alice),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["author"] == {"id": str(alice.id), "username": "alice"}
        assert data["organization"] == "Acme"
        assert data["language"] == "python"
        assert data["tags"] == ["algo", "search"]
        assert data["views"] == 0
        assert uuid.UUID(data["share_id"])

    @pytest.mark.asyncio
    async def test_defaults(self, client, make_user):
        """Omitted fields should fall back to their defaults."""
        alice = await make_user("alice")

        response = await client.post(
            API, json={"title": "t", "content": "x"}, headers=auth_headers(alice)
        )

        data = response.json()
        assert data["visibility"] == "private"
        assert data["language"] == "plaintext"
        assert data["tags"] == []

    @pytest.mark.asyncio
    async def test_missing_content_is_invalid_input(self, client, make_user):
        """A snippet without content → 400 invalid_input."""
        alice = await make_user("alice")

        response = await client.post(API, json={"title": "t"}, headers=auth_headers(alice))

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_unknown_visibility_is_invalid_input(self, client, make_user):
        """An unknown visibility → 400 invalid_input."""
        alice = await make_user("alice")

        response = await client.post(
            API, json=new_snippet(visibility="secret"), headers=auth_headers(alice)
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        """Creating without a token → 401."""
        response = await client.post(API, json=new_snippet())

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"


class TestGetById:
    """Tests for GET /api/snippets/{id}."""

    @pytest.mark.asyncio
    async def test_private_snippet_is_hidden_from_colleagues(self, client, make_user, make_snippet):
        """A colleague reading a private snippet by id → 403 without the body."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        mallory = await make_user("mallory", organization="Globex")
        snippet = await make_snippet(alice, visibility="private", content="TOP SECRET")

        for intruder in (bob, mallory):
            response = await client.get(f"{API}/{snippet.id}", headers=auth_headers(intruder))
            assert response.status_code in (403, 404)
            assert "TOP SECRET" not in response.text

    @pytest.mark.asyncio
    async def test_organization_snippet_scenario(self, client, make_user, make_snippet):
        """An organization snippet should be readable by colleagues and refused to outsiders."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        mallory = await make_user("mallory", organization="Globex")
        created = await client.post(
            API, json=new_snippet(visibility="organization"), headers=auth_headers(alice)
        )
        snippet_id = created.json()["id"]

        same_org = await client.get(f"{API}/{snippet_id}", headers=auth_headers(bob))
        other_org = await client.get(f"{API}/{snippet_id}", headers=auth_headers(mallory))

        assert same_org.status_code == 200
        assert same_org.json()["title"] == "Binary search"
        assert other_org.status_code == 403
        assert other_org.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_owner_sees_detail(self, client, make_user, make_snippet):
        """The owner should see the full detail of their snippet."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice)

        response = await client.get(f"{API}/{snippet.id}", headers=auth_headers(alice))

        assert response.status_code == 200
        data = response.json()
        assert data["sharing_info"] is None
        assert data["current_viewers"] == []

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, client, make_user):
        """An unknown id → 404."""
        alice = await make_user("alice")

        response = await client.get(f"{API}/{uuid.uuid4()}", headers=auth_headers(alice))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_malformed_id_is_invalid_input(self, client, make_user):
        """A malformed id → 400 invalid_input."""
        alice = await make_user("alice")

        response = await client.get(f"{API}/not-a-uuid", headers=auth_headers(alice))

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_soft_deleted_is_not_found_for_everyone(self, client, make_user, make_snippet):
        """A soft-deleted snippet → 404 for the owner and everyone else."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="public")

        deleted = await client.delete(f"{API}/{snippet.id}", headers=auth_headers(alice))
        assert deleted.status_code == 200
        assert deleted.json()["message"] == "Snippet deleted"

        for user in (alice, bob):
            response = await client.get(f"{API}/{snippet.id}", headers=auth_headers(user))
            assert response.status_code == 404
        shared = await client.get(f"{API}/share/{snippet.share_id}")
        assert shared.status_code == 404


class TestShareLink:
    """Tests for GET /api/snippets/share/{share_id}."""

    @pytest.mark.asyncio
    async def test_private_snippet_by_share_link(self, client, make_user, make_snippet):
        """A private share link should open within the organization and be refused outside it."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        mallory = await make_user("mallory", organization="Globex")
        snippet = await make_snippet(alice, visibility="private", content="internal")

        same_org = await client.get(f"{API}/share/{snippet.share_id}", headers=auth_headers(bob))
        other_org = await client.get(
            f"{API}/share/{snippet.share_id}", headers=auth_headers(mallory)
        )
        anonymous = await client.get(f"{API}/share/{snippet.share_id}")

        assert same_org.status_code == 200
        assert same_org.json()["content"] == "internal"
        assert other_org.status_code == 403
        assert anonymous.status_code == 403

    @pytest.mark.asyncio
    async def test_public_snippet_is_anonymous_readable(self, client, make_user, make_snippet):
        """A public share link should open without a token."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice, visibility="public")

        first = await client.get(f"{API}/share/{snippet.share_id}")
        second = await client.get(f"{API}/share/{snippet.share_id}")

        assert first.status_code == 200
        assert first.json()["views"] == 1
        assert second.json()["views"] == 2

    @pytest.mark.asyncio
    async def test_organization_snippet_is_not_anonymous_readable(
        self, client, make_user, make_snippet
    ):
        """An organization share link opened anonymously → 403."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice, visibility="organization")

        response = await client.get(f"{API}/share/{snippet.share_id}")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_token_is_rejected_not_anonymous(self, client, make_user, make_snippet):
        """A bad token on a share link → 401, not an anonymous read."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice, visibility="public")

        response = await client.get(
            f"{API}/share/{snippet.share_id}", headers={"Authorization": "Bearer garbage"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_share_id(self, client):
        """An unknown share id → 404."""
        response = await client.get(f"{API}/share/{uuid.uuid4()}")
        assert response.status_code == 404


class TestUpdateAndDelete:
    """Tests for PUT and DELETE /api/snippets/{id}."""

    @pytest.mark.asyncio
    async def test_edit_grant_scenario(self, client, make_user, make_snippet):
        """An edit grantee should update the content and see the change."""
        alice = await make_user("alice")
        anna = await make_user("anna", organization="Globex", email="a@globex.io")
        carl = await make_user("carl", organization="Globex")
        snippet = await make_snippet(alice)

        shared = await client.post(
            f"{API}/{snippet.id}/share",
            json={"emails": ["a@globex.io"], "permission": "edit"},
            headers=auth_headers(alice),
        )
        assert shared.status_code == 200

        by_grantee = await client.put(
            f"{API}/{snippet.id}", json={"title": "Improved"}, headers=auth_headers(anna)
        )
        by_stranger = await client.put(
            f"{API}/{snippet.id}", json={"title": "Hijacked"}, headers=auth_headers(carl)
        )

        assert by_grantee.status_code == 200
        assert by_grantee.json()["title"] == "Improved"
        assert by_stranger.status_code == 404

    @pytest.mark.asyncio
    async def test_view_grant_cannot_update(self, client, make_user, make_snippet):
        """A view grantee updating the snippet → 403."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="organization")
        await client.post(
            f"{API}/{snippet.id}/share",
            json={"usernames": ["bob"], "permission": "view"},
            headers=auth_headers(alice),
        )

        response = await client.put(
            f"{API}/{snippet.id}", json={"title": "x"}, headers=auth_headers(bob)
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_edit_grantee_cannot_change_visibility(self, client, make_user, make_snippet):
        """An edit grant covers content; publishing a private snippet stays with the owner."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, content="secret")
        await client.post(
            f"{API}/{snippet.id}/share",
            json={"usernames": ["bob"], "permission": "edit"},
            headers=auth_headers(alice),
        )

        response = await client.put(
            f"{API}/{snippet.id}",
            json={"title": "Published", "visibility": "public"},
            headers=auth_headers(bob),
        )
        anonymous = await client.get(f"{API}/share/{snippet.share_id}")
        owner_view = await client.get(f"{API}/{snippet.id}", headers=auth_headers(alice))

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"
        assert anonymous.status_code == 403
        assert "secret" not in anonymous.text
        assert owner_view.json()["visibility"] == "private"
        assert owner_view.json()["title"] == "Snippet"

    @pytest.mark.asyncio
    async def test_edit_grantee_may_resend_current_visibility(
        self, client, make_user, make_snippet
    ):
        """Editors that send the whole form back unchanged are not refused."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice)
        await client.post(
            f"{API}/{snippet.id}/share",
            json={"usernames": ["bob"], "permission": "edit"},
            headers=auth_headers(alice),
        )

        response = await client.put(
            f"{API}/{snippet.id}",
            json={"title": "Tidied", "visibility": "private"},
            headers=auth_headers(bob),
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Tidied"
        assert response.json()["visibility"] == "private"

    @pytest.mark.asyncio
    async def test_only_whitelisted_fields_change(self, client, make_user, make_snippet):
        """Fields outside the update schema should be ignored."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice, tags=["old"])

        response = await client.put(
            f"{API}/{snippet.id}",
            json={
                "tags": ["old", "New"],
                "visibility": "public",
                "views": 999,
                "share_id": "mine-now",
                "organization": "Globex",
            },
            headers=auth_headers(alice),
        )

        data = response.json()
        assert response.status_code == 200
        assert data["tags"] == ["old", "New"]
        assert data["visibility"] == "public"
        assert data["views"] == 0
        assert data["share_id"] == snippet.share_id
        assert data["organization"] == "Acme"

    @pytest.mark.asyncio
    async def test_non_owner_delete_is_not_found(self, client, make_user, make_snippet):
        """A non-owner deleting a snippet → 404."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="public")

        response = await client.delete(f"{API}/{snippet.id}", headers=auth_headers(bob))
        still_there = await client.get(f"{API}/{snippet.id}", headers=auth_headers(bob))

        assert response.status_code == 404
        assert still_there.status_code == 200


class TestSharing:
    """Tests for the share, unshare and sharing-details routes."""

    @pytest.mark.asyncio
    async def test_three_way_report(self, client, make_user, make_snippet):
        """Sharing should report granted, already_shared and not_found targets."""
        alice = await make_user("alice")
        await make_user("bob")
        snippet = await make_snippet(alice)

        response = await client.post(
            f"{API}/{snippet.id}/share",
            json={"emails": ["bob@acme.io", "later@globex.io"], "usernames": ["bob", "nobody"]},
            headers=auth_headers(alice),
        )

        data = response.json()
        assert response.status_code == 200
        assert data["message"] == "Snippet shared successfully"
        assert [(g["email"], g["resolved"]) for g in data["granted"]] == [
            ("bob@acme.io", True),
            ("later@globex.io", False),
        ]
        assert data["already_shared"] == [{"type": "username", "value": "bob"}]
        assert data["not_found"] == [{"type": "username", "value": "nobody"}]
        assert data["total_shared_users"] == 2

    @pytest.mark.asyncio
    async def test_same_email_twice(self, client, make_user, make_snippet):
        """Sharing the same e-mail twice should keep a single grant."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice)
        body = {"emails": ["someone@globex.io"]}

        await client.post(f"{API}/{snippet.id}/share", json=body, headers=auth_headers(alice))
        second = await client.post(
            f"{API}/{snippet.id}/share", json=body, headers=auth_headers(alice)
        )
        details = await client.get(f"{API}/{snippet.id}/share", headers=auth_headers(alice))

        assert second.json()["message"] == "No new users were added"
        assert second.json()["already_shared"] == [{"type": "email", "value": "someone@globex.io"}]
        assert details.json()["total_shared_users"] == 1

    @pytest.mark.asyncio
    async def test_invalid_email_is_rejected(self, client, make_user, make_snippet):
        """A malformed e-mail in a share request → 400 invalid_input."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice)

        response = await client.post(
            f"{API}/{snippet.id}/share", json={"emails": ["nope"]}, headers=auth_headers(alice)
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_owner_cannot_share_or_inspect(self, client, make_user, make_snippet):
        """A non-owner sharing or listing grants → 404."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="organization")

        share = await client.post(
            f"{API}/{snippet.id}/share", json={"usernames": ["bob"]}, headers=auth_headers(bob)
        )
        details = await client.get(f"{API}/{snippet.id}/share", headers=auth_headers(bob))

        assert share.status_code == 404
        assert details.status_code == 404

    @pytest.mark.asyncio
    async def test_sharing_details(self, client, make_user, make_snippet):
        """The owner should see every grant with who granted it."""
        alice = await make_user("alice")
        await make_user("bob")
        snippet = await make_snippet(alice)
        await client.post(
            f"{API}/{snippet.id}/share",
            json={"usernames": ["bob"], "permission": "edit"},
            headers=auth_headers(alice),
        )

        response = await client.get(f"{API}/{snippet.id}/share", headers=auth_headers(alice))

        data = response.json()
        assert data["share_id"] == snippet.share_id
        assert len(data["grants"]) == 1
        grant = data["grants"][0]
        assert grant["username"] == "bob"
        assert grant["permission"] == "edit"
        assert grant["granted_by"] == "alice"

    @pytest.mark.asyncio
    async def test_sharing_details_alias(self, client, make_user, make_snippet):
        """GET /{id}/sharing answers exactly like GET /{id}/share, denials included."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="organization")
        await client.post(
            f"{API}/{snippet.id}/share",
            json={"usernames": ["bob"]},
            headers=auth_headers(alice),
        )

        canonical = await client.get(f"{API}/{snippet.id}/share", headers=auth_headers(alice))
        alias = await client.get(f"{API}/{snippet.id}/sharing", headers=auth_headers(alice))
        by_grantee = await client.get(f"{API}/{snippet.id}/sharing", headers=auth_headers(bob))

        assert alias.status_code == 200
        assert alias.json() == canonical.json()
        assert by_grantee.status_code == 404

    @pytest.mark.asyncio
    async def test_unshare(self, client, make_user, make_snippet):
        """Unsharing should remove access; a second unshare reports not_found."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice)
        await client.post(
            f"{API}/{snippet.id}/share", json={"usernames": ["bob"]}, headers=auth_headers(alice)
        )
        assert (await client.get(f"{API}/{snippet.id}", headers=auth_headers(bob))).status_code == 200

        details = await client.get(f"{API}/{snippet.id}/share", headers=auth_headers(alice))
        grant_id = details.json()["grants"][0]["id"]

        removed = await client.delete(
            f"{API}/{snippet.id}/share/{grant_id}", headers=auth_headers(alice)
        )
        again = await client.delete(
            f"{API}/{snippet.id}/share/{grant_id}", headers=auth_headers(alice)
        )
        access = await client.get(f"{API}/{snippet.id}", headers=auth_headers(bob))

        assert removed.status_code == 200
        assert removed.json()["result"] == "removed"
        assert again.status_code == 200
        assert again.json()["result"] == "not_found"
        assert access.status_code == 403


class TestPresence:
    """Tests for the join-view, leave-view and viewers routes."""

    @pytest.mark.asyncio
    async def test_join_twice_keeps_one_entry(self, client, make_user, make_snippet):
        """Joining twice should keep one entry for the viewer."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="organization")

        await client.post(
            f"{API}/{snippet.id}/join-view",
            json={"session_token": "tab-1"},
            headers=auth_headers(bob),
        )
        response = await client.post(
            f"{API}/{snippet.id}/join-view",
            json={"session_token": "tab-1"},
            headers=auth_headers(bob),
        )

        data = response.json()
        assert response.status_code == 200
        assert data["message"] == "Joined snippet viewing"
        assert [v["user"]["username"] for v in data["current_viewers"]] == ["bob"]

    @pytest.mark.asyncio
    async def test_join_without_body(self, client, make_user, make_snippet):
        """Joining without a request body should still work."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice)

        response = await client.post(f"{API}/{snippet.id}/join-view", headers=auth_headers(alice))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_viewers_and_leave(self, client, make_user, make_snippet):
        """A viewer who leaves should drop off the viewers list."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="organization")
        await client.post(f"{API}/{snippet.id}/join-view", headers=auth_headers(alice))
        await client.post(f"{API}/{snippet.id}/join-view", headers=auth_headers(bob))

        viewers = await client.get(f"{API}/{snippet.id}/viewers", headers=auth_headers(alice))
        assert {v["user"]["username"] for v in viewers.json()["current_viewers"]} == {"alice", "bob"}

        left = await client.post(f"{API}/{snippet.id}/leave-view", headers=auth_headers(bob))
        detail = await client.get(f"{API}/{snippet.id}", headers=auth_headers(alice))

        assert left.status_code == 200
        assert [v["user"]["username"] for v in detail.json()["current_viewers"]] == ["alice"]

    @pytest.mark.asyncio
    async def test_join_denied_outside_organization(self, client, make_user, make_snippet):
        """Joining from another organization → 403, and the viewers list → 404."""
        alice = await make_user("alice")
        mallory = await make_user("mallory", organization="Globex")
        snippet = await make_snippet(alice, visibility="organization")

        join = await client.post(f"{API}/{snippet.id}/join-view", headers=auth_headers(mallory))
        viewers = await client.get(f"{API}/{snippet.id}/viewers", headers=auth_headers(mallory))

        assert join.status_code == 403
        assert viewers.status_code == 404

    @pytest.mark.asyncio
    async def test_leave_deleted_snippet_is_not_found(self, client, make_user, make_snippet):
        """Leaving a soft-deleted snippet → 404."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice, is_active=False)

        response = await client.post(f"{API}/{snippet.id}/leave-view", headers=auth_headers(alice))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_leave_does_not_reveal_foreign_snippets(self, client, make_user, make_snippet):
        """An outsider gets the same 404 for a private snippet as for an unknown id."""
        alice = await make_user("alice")
        mallory = await make_user("mallory", organization="Globex")
        snippet = await make_snippet(alice, visibility="private")

        existing = await client.post(
            f"{API}/{snippet.id}/leave-view", headers=auth_headers(mallory)
        )
        unknown = await client.post(
            f"{API}/{uuid.uuid4()}/leave-view", headers=auth_headers(mallory)
        )

        assert existing.status_code == 404
        assert existing.json()["message"] == unknown.json()["message"]

    @pytest.mark.asyncio
    async def test_leave_is_idempotent_for_viewers(self, client, make_user, make_snippet):
        """Leaving twice, or without having joined, still answers 200."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, visibility="organization")

        first = await client.post(f"{API}/{snippet.id}/leave-view", headers=auth_headers(bob))
        second = await client.post(f"{API}/{snippet.id}/leave-view", headers=auth_headers(bob))

        assert first.status_code == 200
        assert second.status_code == 200


class TestListings:
    """Tests for the my, organization and shared-with-me listings."""

    @pytest.mark.asyncio
    async def test_my_snippets(self, client, make_user, make_snippet):
        """/my should list only the caller's active snippets."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        for i in range(3):
            await make_snippet(alice, title=f"mine-{i}")
        await make_snippet(alice, title="gone", is_active=False)
        await make_snippet(bob, title="not mine", visibility="organization")

        response = await client.get(f"{API}/my?limit=2", headers=auth_headers(alice))

        data = response.json()
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert data["current_page"] == 1
        assert len(data["snippets"]) == 2
        assert {s["title"] for s in data["snippets"]} <= {"mine-0", "mine-1", "mine-2"}
        assert response.headers["X-Total-Count"] == "3"

    @pytest.mark.asyncio
    async def test_organization_listing(self, client, make_user, make_snippet):
        """The organization listing should hide private snippets and other organizations."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        mallory = await make_user("mallory", organization="Globex")
        await make_snippet(alice, title="org", visibility="organization")
        await make_snippet(alice, title="pub", visibility="public")
        await make_snippet(alice, title="priv", visibility="private")
        await make_snippet(mallory, title="elsewhere", visibility="public")

        response = await client.get(f"{API}/org", headers=auth_headers(bob))

        assert {s["title"] for s in response.json()["snippets"]} == {"org", "pub"}

    @pytest.mark.asyncio
    async def test_shared_with_me(self, client, make_user, make_snippet):
        """A pending e-mail grant should list under shared-with-me once the account exists."""
        alice = await make_user("alice")
        snippet = await make_snippet(alice, title="for newcomer")
        await make_snippet(alice, title="not shared")
        await client.post(
            f"{API}/{snippet.id}/share",
            json={"emails": ["newcomer@globex.io"], "permission": "edit"},
            headers=auth_headers(alice),
        )
        # The account appears after the grant was made
        newcomer = await make_user("newcomer", organization="Globex")

        response = await client.get(f"{API}/shared-with-me", headers=auth_headers(newcomer))

        data = response.json()
        assert data["total"] == 1
        item = data["snippets"][0]
        assert item["title"] == "for newcomer"
        assert item["sharing_info"]["permission"] == "edit"
        assert item["sharing_info"]["shared_by"] == "alice"

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, client, make_user):
        """A limit out of range → 400 invalid_input."""
        alice = await make_user("alice")

        response = await client.get(f"{API}/my?limit=0", headers=auth_headers(alice))

        assert response.status_code == 400


class TestSearchAndStats:
    """Tests for search and the stats endpoint."""

    @pytest.mark.asyncio
    async def test_language_and_author_scenario(self, client, make_user, make_snippet):
        """Search should filter by language and author inside the organization."""
        caller = await make_user("caller")
        jdoe = await make_user("jdoe")
        other = await make_user("other")
        outsider = await make_user("jdoe-globex", organization="Globex")

        await make_snippet(jdoe, title="match-org", language="python", visibility="organization")
        await make_snippet(jdoe, title="match-public", language="python", visibility="public")
        await make_snippet(jdoe, title="private", language="python", visibility="private")
        await make_snippet(jdoe, title="deleted", language="python", visibility="public", is_active=False)
        await make_snippet(jdoe, title="wrong-language", language="go", visibility="public")
        await make_snippet(other, title="wrong-author", language="python", visibility="public")
        await make_snippet(outsider, title="other-org", language="python", visibility="public")

        response = await client.get(
            f"{API}/search?language=python&author=jdoe", headers=auth_headers(caller)
        )

        data = response.json()
        assert response.status_code == 200
        assert {s["title"] for s in data["snippets"]} == {"match-org", "match-public"}
        assert data["total"] == 2

    @pytest.mark.asyncio
    async def test_granted_private_snippet_is_searchable(self, client, make_user, make_snippet):
        """A private snippet shared with the caller should show in search."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        snippet = await make_snippet(alice, title="private but shared", language="rust")
        await client.post(
            f"{API}/{snippet.id}/share", json={"usernames": ["bob"]}, headers=auth_headers(alice)
        )

        response = await client.get(f"{API}/search?language=rust", headers=auth_headers(bob))

        assert [s["title"] for s in response.json()["snippets"]] == ["private but shared"]

    @pytest.mark.asyncio
    async def test_text_and_tag_filters(self, client, make_user, make_snippet):
        """Search should match free text and any of the given tags."""
        alice = await make_user("alice")
        await make_snippet(alice, title="Quicksort", content="pivot", tags=["sorting"])
        await make_snippet(alice, title="Dijkstra", content="PRIORITY queue", tags=["graphs"])
        await make_snippet(alice, title="Notes", content="misc", tags=["misc"])

        text = await client.get(f"{API}/search?q=priority", headers=auth_headers(alice))
        tags = await client.get(f"{API}/search?tags=sorting,graphs", headers=auth_headers(alice))
        everything = await client.get(f"{API}/search?language=all", headers=auth_headers(alice))

        assert [s["title"] for s in text.json()["snippets"]] == ["Dijkstra"]
        assert {s["title"] for s in tags.json()["snippets"]} == {"Quicksort", "Dijkstra"}
        assert everything.json()["total"] == 3

    @pytest.mark.asyncio
    async def test_unknown_author_returns_nothing(self, client, make_user, make_snippet):
        """Searching by an unknown author should return nothing."""
        alice = await make_user("alice")
        await make_snippet(alice, visibility="public")

        response = await client.get(f"{API}/search?author=zzz", headers=auth_headers(alice))

        assert response.json()["snippets"] == []
        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, client, make_user, make_snippet):
        """Stats should count languages and tags the caller's organization can see."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        mallory = await make_user("mallory", organization="Globex")
        await make_snippet(alice, language="python", visibility="organization", tags=["web", "api"])
        await make_snippet(alice, language="python", visibility="public", tags=["web"])
        await make_snippet(alice, language="go", visibility="private", tags=["cli"])
        await make_snippet(mallory, language="java", visibility="public", tags=["web"])

        response = await client.get(f"{API}/stats", headers=auth_headers(bob))

        data = response.json()
        assert data["languages"] == [{"name": "python", "count": 2}]
        assert data["tags"] == [{"name": "web", "count": 2}, {"name": "api", "count": 1}]
