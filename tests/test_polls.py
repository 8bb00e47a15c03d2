"""Tests for poll definitions, responses and results."""

from depthcaster.services.curation import curate_cast
from tests.factories import cast_data, grant

ADMIN = 9


async def seed(db, *hashes):
    await grant(db, ADMIN, "admin")
    for cast_hash in hashes or ("0xA",):
        await curate_cast(db, cast_data(cast_hash), 1)
    await db.commit()


async def create_poll(client, cast_hash="0xA", **overrides):
    body = {
        "user_fid": ADMIN,
        "question": "Which book first?",
        "poll_type": "ranking",
        "options": [{"text": "Dune"}, {"text": "Emma"}, {"text": "Ubik"}],
    }
    body.update(overrides)
    return await client.post(f"/api/poll/{cast_hash}", json=body)


def option_ids(resp):
    return [option["id"] for option in resp.json()["poll"]["options"]]


class TestPollDefinition:
    async def test_create_and_fetch_by_slug(self, client, db):
        await seed(db)
        resp = await create_poll(client, slug="reading-order")
        assert resp.status_code == 200
        poll = resp.json()["poll"]
        assert [o["option_text"] for o in poll["options"]] == ["Dune", "Emma", "Ubik"]
        assert [o["order"] for o in poll["options"]] == [1, 2, 3]

        by_slug = await client.get("/api/poll/reading-order")
        assert by_slug.json()["poll"]["id"] == poll["id"]
        by_hash = await client.get("/api/poll/0xA")
        assert by_hash.json()["poll"]["question"] == "Which book first?"

    async def test_unknown_poll(self, client):
        resp = await client.get("/api/poll/nothing-here")
        assert resp.status_code == 200
        assert resp.json() == {"poll": None}

    async def test_explicit_option_order(self, client, db):
        await seed(db)
        resp = await create_poll(client, options=[{"text": "B", "order": 2}, {"text": "A", "order": 1}])
        assert [o["option_text"] for o in resp.json()["poll"]["options"]] == ["A", "B"]

    async def test_saving_again_replaces_options(self, client, db):
        await seed(db)
        first = await create_poll(client)
        second = await create_poll(client, question="Shorter list", options=[{"text": "One"}, {"text": "Two"}])
        assert second.json()["poll"]["id"] == first.json()["poll"]["id"]
        assert [o["option_text"] for o in second.json()["poll"]["options"]] == ["One", "Two"]
        assert second.json()["poll"]["question"] == "Shorter list"

    async def test_requires_admin(self, client, db):
        await seed(db)
        await grant(db, 5, "curator")
        resp = await create_poll(client, user_fid=5)
        assert resp.status_code == 403

    async def test_needs_two_options(self, client, db):
        await seed(db)
        resp = await create_poll(client, options=[{"text": "Only"}])
        assert resp.status_code == 400
        resp = await create_poll(client, options=[{"text": "A"}, {"text": "  "}])
        assert resp.status_code == 400

    async def test_choice_poll_needs_choices(self, client, db):
        await seed(db)
        resp = await create_poll(client, poll_type="choice")
        assert resp.status_code == 400

    async def test_unknown_type(self, client, db):
        await seed(db)
        resp = await create_poll(client, poll_type="approval")
        assert resp.status_code == 400

    async def test_cast_must_be_curated(self, client, db):
        await seed(db)
        resp = await create_poll(client, cast_hash="0xNOPE")
        assert resp.status_code == 404

    async def test_slug_taken_by_another_cast(self, client, db):
        await seed(db, "0xA", "0xB")
        assert (await create_poll(client, "0xA", slug="picks")).status_code == 200
        assert (await create_poll(client, "0xB", slug="picks")).status_code == 409
        assert (await create_poll(client, "0xA", slug="picks")).status_code == 200


class TestRankingResponses:
    async def test_average_rank(self, client, db):
        await seed(db)
        dune, emma, ubik = option_ids(await create_poll(client))

        for fid, ranking in ((1, [dune, emma, ubik]), (2, [emma, dune, ubik])):
            resp = await client.post("/api/poll/0xA/submit", json={"user_fid": fid, "rankings": ranking})
            assert resp.status_code == 200

        resp = await client.get("/api/poll/0xA/results", params={"user_fid": ADMIN})
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_responses"] == 2
        by_id = {r["option_id"]: r for r in data["results"]}
        assert by_id[dune]["average_rank"] == 1.5
        assert by_id[emma]["average_rank"] == 1.5
        assert by_id[ubik]["average_rank"] == 3
        assert by_id[ubik]["rankings"] == [3, 3]
        assert data["results"][-1]["option_id"] == ubik

    async def test_single_respondent_average_is_submitted_rank(self, client, db):
        await seed(db)
        dune, emma, ubik = option_ids(await create_poll(client))
        await client.post("/api/poll/0xA/submit", json={"user_fid": 1, "rankings": [ubik, dune, emma]})

        results = (await client.get("/api/poll/0xA/results", params={"user_fid": ADMIN})).json()["results"]
        assert [(r["option_id"], r["average_rank"]) for r in results] == [(ubik, 1), (dune, 2), (emma, 3)]

    async def test_resubmission_replaces_response(self, client, db):
        await seed(db)
        dune, emma, ubik = option_ids(await create_poll(client))
        await client.post("/api/poll/0xA/submit", json={"user_fid": 1, "rankings": [dune, emma, ubik]})
        await client.post("/api/poll/0xA/submit", json={"user_fid": 1, "rankings": [ubik, emma, dune]})

        resp = await client.get("/api/poll/0xA", params={"user_fid": 1})
        assert resp.json()["user_response"]["rankings"] == [ubik, emma, dune]

        results = await client.get("/api/poll/0xA/results", params={"user_fid": ADMIN})
        assert results.json()["total_responses"] == 1

    async def test_rankings_must_cover_every_option(self, client, db):
        await seed(db)
        dune, emma, _ = option_ids(await create_poll(client))
        resp = await client.post("/api/poll/0xA/submit", json={"user_fid": 1, "rankings": [dune, emma]})
        assert resp.status_code == 400
        resp = await client.post("/api/poll/0xA/submit", json={"user_fid": 1, "rankings": [dune, dune, emma]})
        assert resp.status_code == 400

    async def test_submit_to_unknown_poll(self, client):
        resp = await client.post("/api/poll/0xNOPE/submit", json={"user_fid": 1, "rankings": [1]})
        assert resp.status_code == 404

    async def test_results_are_admin_only(self, client, db):
        await seed(db)
        await create_poll(client)
        resp = await client.get("/api/poll/0xA/results", params={"user_fid": 1})
        assert resp.status_code == 403


class TestChoiceAndDistribution:
    async def test_choice_counts(self, client, db):
        await seed(db)
        first, second = option_ids(
            await create_poll(
                client,
                poll_type="choice",
                options=[{"text": "Tabs"}, {"text": "Spaces"}],
                choices=["love", "hate"],
            )
        )
        for fid, picks in ((1, ("love", "hate")), (2, ("love", "love"))):
            resp = await client.post(
                "/api/poll/0xA/submit",
                json={"user_fid": fid, "choices": {str(first): picks[0], str(second): picks[1]}},
            )
            assert resp.status_code == 200

        bad = await client.post(
            "/api/poll/0xA/submit",
            json={"user_fid": 3, "choices": {str(first): "meh", str(second): "love"}},
        )
        assert bad.status_code == 400

        results = (await client.get("/api/poll/0xA/results", params={"user_fid": ADMIN})).json()["results"]
        by_id = {r["option_id"]: r for r in results}
        assert by_id[first]["choice_counts"] == {"love": 2}
        assert by_id[second]["choice_counts"] == {"hate": 1, "love": 1}

    async def test_distribution_must_total_seven(self, client, db):
        await seed(db)
        first, second, third = option_ids(await create_poll(client, poll_type="distribution"))
        resp = await client.post(
            "/api/poll/0xA/submit",
            json={"user_fid": 1, "allocations": {str(first): 3, str(second): 3}},
        )
        assert resp.status_code == 400

        resp = await client.post(
            "/api/poll/0xA/submit",
            json={"user_fid": 1, "allocations": {str(first): 4, str(second): 3, str(third): 0}},
        )
        assert resp.status_code == 200

        results = (await client.get("/api/poll/0xA/results", params={"user_fid": ADMIN})).json()["results"]
        assert [r["total_votes"] for r in results] == [4, 3, 0]
        assert [r["voter_count"] for r in results] == [1, 1, 0]


class TestPollListing:
    async def test_lists_with_counts(self, client, db):
        await seed(db)
        dune, emma, ubik = option_ids(await create_poll(client))
        await client.post("/api/poll/0xA/submit", json={"user_fid": 1, "rankings": [dune, emma, ubik]})

        resp = await client.get("/api/polls", params={"user_fid": ADMIN})
        assert resp.status_code == 200
        polls = resp.json()["polls"]
        assert len(polls) == 1
        assert polls[0]["option_count"] == 3
        assert polls[0]["response_count"] == 1
