import unittest

from fakes import make_movie

from movierec.services.scoring_engine import ScoringEngine, ScoringWeights, genre_preferences

WEIGHTS = ScoringWeights(genre_match_bonus=2.0, learned_preference_weight=0.5, recency_bonus=0.5, recency_years=3)


class TestGenrePreferences(unittest.TestCase):
    def test_average_rating_per_genre(self):
        rated = [
            make_movie(1, genres=[(28, "Action")], user_rating=8.0),
            make_movie(2, genres=[(28, "Action"), (18, "Drama")], user_rating=6.0),
            make_movie(3, genres=[(18, "Drama")], user_rating=None),
        ]
        self.assertEqual(genre_preferences(rated), {"Action": 7.0, "Drama": 6.0})

    def test_nameless_genres_are_ignored(self):
        self.assertEqual(genre_preferences([make_movie(1, genres=[(28, "")], user_rating=9.0)]), {})


class TestScoringEngine(unittest.TestCase):
    def setUp(self):
        self.engine = ScoringEngine(WEIGHTS, current_year=2024)

    def test_base_score_is_vote_average(self):
        movie = make_movie(1, vote=6.4, release_date="1999-05-01")
        self.assertAlmostEqual(self.engine.score(movie, [], {}), 6.4)

    def test_preferred_genre_bonus_is_case_insensitive(self):
        movie = make_movie(1, vote=6.0, genres=[(28, "Action"), (35, "Comedy")], release_date="1990-01-01")
        self.assertAlmostEqual(self.engine.score(movie, ["action", "Comedy"], {}), 10.0)

    def test_learned_preference_share(self):
        movie = make_movie(1, vote=5.0, genres=[(18, "Drama")], release_date="1990-01-01")
        self.assertAlmostEqual(self.engine.score(movie, [], {"Drama": 8.0}), 9.0)

    def test_recency_bonus_window(self):
        self.assertAlmostEqual(self.engine.score(make_movie(1, vote=5.0, release_date="2021-02-01"), [], {}), 5.5)
        self.assertAlmostEqual(self.engine.score(make_movie(2, vote=5.0, release_date="2020-12-31"), [], {}), 5.0)
        self.assertAlmostEqual(self.engine.score(make_movie(3, vote=5.0, release_date=""), [], {}), 5.0)

    def test_rank_orders_by_score(self):
        candidates = [
            make_movie(1, vote=6.0, release_date="1990-01-01"),
            make_movie(2, vote=5.0, genres=[(28, "Action")], release_date="1990-01-01"),
            make_movie(3, vote=7.5, release_date="1990-01-01"),
        ]
        ranked = self.engine.rank(candidates, ["Action"], [])
        self.assertEqual([m.id for m in ranked], [2, 3, 1])

    def test_ties_keep_candidate_order(self):
        candidates = [make_movie(i, vote=7.0, release_date="1990-01-01") for i in (5, 3, 9, 1)]
        ranked = self.engine.rank(candidates, [], [])
        self.assertEqual([m.id for m in ranked], [5, 3, 9, 1])

    def test_rating_history_lifts_matching_genres(self):
        rated = [make_movie(100, genres=[(878, "Science Fiction")], user_rating=10.0)]
        candidates = [
            make_movie(1, vote=7.0, genres=[(35, "Comedy")], release_date="1990-01-01"),
            make_movie(2, vote=5.0, genres=[(878, "Science Fiction")], release_date="1990-01-01"),
        ]
        scored = self.engine.score_candidates(candidates, [], rated)
        self.assertEqual([(m.id, s) for m, s in scored], [(2, 10.0), (1, 7.0)])

    def test_deterministic(self):
        candidates = [make_movie(i, vote=float(i % 4), genres=[(28, "Action")]) for i in range(20)]
        first = self.engine.rank(candidates, ["Action"], [])
        second = self.engine.rank(candidates, ["Action"], [])
        self.assertEqual([m.id for m in first], [m.id for m in second])


if __name__ == "__main__":
    unittest.main()
