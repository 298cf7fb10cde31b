import unittest

import httpx
from fastapi.testclient import TestClient

from fakes import GENRES, CatalogRoutes, FakeRedis, make_client, movie_payload

from movierec.main import app
from movierec.services.cache_manager import CacheManager
from movierec.services.recommendation_service import RecommendationEngine
from movierec.services.scoring_engine import ScoringEngine, ScoringWeights


def offline(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Network is unreachable", request=request)


class ApiTestCase(unittest.TestCase):
    """Wires app state by hand; the lifespan (real Redis, real TMDb) is never entered."""

    def setUp(self):
        self.routes = (
            CatalogRoutes()
            .add("GET", "/genre/movie/list", {"genres": GENRES})
            .add("GET", "/configuration", {"images": {}})
            .add("GET", "/discover/movie", {"results": [movie_payload(1, genre_ids=[28]), movie_payload(2)]})
            .add("GET", "/movie/1/recommendations", {"results": [movie_payload(3), movie_payload(4)]})
            .add("GET", "/search/movie", {"results": [movie_payload(5, title="Alien")]})
            .add("GET", "/movie/5", movie_payload(5, title="Alien", poster_path="/alien.jpg", genres=[{"id": 878, "name": "Science Fiction"}]))
        )
        self.redis = FakeRedis()
        self.install(make_client(self.routes, cache=CacheManager(self.redis)))
        self.http = TestClient(app)

    def install(self, client, api_key=None):
        if api_key is not None:
            client.api_key = api_key
        app.state.tmdb_client = client
        app.state.cache = client.cache
        app.state.engine = RecommendationEngine(client, ScoringEngine(ScoringWeights(), current_year=2024))


class TestRecommendationRoutes(ApiTestCase):
    def test_popular(self):
        resp = self.http.get("/api/recommendations/popular", params={"exclude": [2]})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["source"], "popular")
        self.assertEqual([m["id"] for m in body["movies"]], [1])
        self.assertTrue(body["metadata"]["fallback"])

    def test_genre(self):
        resp = self.http.get("/api/recommendations/genre", params={"genres": ["action"]})
        body = resp.json()
        self.assertEqual(body["source"], "genre_based")
        self.assertEqual(body["metadata"]["genre_ids"], [28])
        self.assertEqual(body["movies"][0]["genres"][0]["name"], "Action")

    def test_personalized_for_guest(self):
        resp = self.http.post(
            "/api/recommendations/personalized",
            json={"profile": {"is_authenticated": False, "preferred_genres": ["Drama"]}, "exclude_ids": [1]},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["source"], "popular")
        self.assertEqual([m["id"] for m in resp.json()["movies"]], [2])

    def test_similar(self):
        resp = self.http.get("/api/recommendations/similar/1", params={"exclude": [4]})
        self.assertEqual([m["id"] for m in resp.json()], [3])


class TestMovieRoutes(ApiTestCase):
    def test_search_and_details(self):
        self.assertEqual(self.http.get("/api/movies/search", params={"q": "alien"}).json()[0]["title"], "Alien")
        details = self.http.get("/api/movies/5").json()
        self.assertEqual(details["genres"], [{"id": 878, "name": "Science Fiction"}])
        self.assertTrue(details["poster_url"].endswith("/alien.jpg"))
        self.assertIsNone(details["backdrop_url"])

    def test_empty_query_is_rejected(self):
        self.assertEqual(self.http.get("/api/movies/search", params={"q": ""}).status_code, 422)

    def test_genres(self):
        self.assertEqual(len(self.http.get("/api/movies/genres").json()), len(GENRES))


class TestErrors(ApiTestCase):
    def test_not_found(self):
        resp = self.http.get("/api/movies/999")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "not_found")
        self.assertFalse(resp.json()["retry"])

    def test_missing_key_asks_for_reauthentication(self):
        self.install(make_client(self.routes), api_key="")
        resp = self.http.get("/api/movies/genres")
        self.assertEqual(resp.status_code, 401)
        body = resp.json()
        self.assertEqual(body["error"], "auth")
        self.assertTrue(body["reauthenticate"])
        self.assertFalse(body["retry"])

    def test_offline_without_cache_offers_retry(self):
        self.install(make_client(CatalogRoutes().add("GET", "/discover/movie", offline)))
        resp = self.http.get("/api/recommendations/popular")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["error"], "network")
        self.assertTrue(resp.json()["retry"])


class TestMaintenanceAndStatus(ApiTestCase):
    def test_sweep_and_clear(self):
        self.http.get("/api/movies/genres")
        self.assertIn("genres_cache", self.redis.store)

        sweep = self.http.post("/api/maintenance/cache/sweep").json()
        self.assertEqual(sweep["removed"], 0)

        cleared = self.http.delete("/api/maintenance/cache").json()
        self.assertEqual(cleared["removed"], 1)
        self.assertNotIn("genres_cache", self.redis.store)

    def test_status(self):
        body = self.http.get("/api/status").json()
        self.assertTrue(body["catalog_online"])
        self.assertEqual(body["rate_limit"]["service"], "tmdb_api")
        self.assertIn("checked_at", body)


if __name__ == "__main__":
    unittest.main()
