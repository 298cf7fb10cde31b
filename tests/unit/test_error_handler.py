import json
import unittest

import httpx
import pydantic

from movierec.schemas import Movie
from movierec.services.error_handler import (
    AuthError,
    CacheError,
    ErrorKind,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    ValidationError,
    classify,
    describe,
    error_for_status,
    is_retryable,
)


def status_error(code: int, body=None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://tmdb.test/3/movie/1")
    response = httpx.Response(code, json=body, request=request) if body is not None else httpx.Response(code, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class TestClassify(unittest.TestCase):
    def test_status_codes(self):
        self.assertIsInstance(classify(status_error(401)), AuthError)
        self.assertIsInstance(classify(status_error(404)), NotFoundError)
        self.assertIsInstance(classify(status_error(429)), RateLimitedError)
        self.assertIsInstance(classify(status_error(500)), ServerError)
        self.assertIsInstance(classify(status_error(503)), ServerError)
        self.assertIsInstance(classify(status_error(422)), ValidationError)

    def test_status_message_is_read_from_body(self):
        err = classify(status_error(401, {"status_message": "Invalid API key: You must be granted a valid key."}))
        self.assertIsInstance(err, AuthError)
        self.assertIn("Invalid API key", err.message)
        self.assertEqual(err.status_code, 401)

    def test_transport_failures_are_network_errors(self):
        request = httpx.Request("GET", "https://tmdb.test/3")
        self.assertIsInstance(classify(httpx.ConnectError("dns", request=request)), NetworkError)
        self.assertIsInstance(classify(httpx.ReadTimeout("slow", request=request)), NetworkError)
        self.assertIsInstance(classify(ConnectionResetError()), NetworkError)

    def test_parse_failures_are_malformed(self):
        try:
            json.loads("{not json")
        except json.JSONDecodeError as e:
            self.assertIsInstance(classify(e), MalformedResponseError)
        try:
            Movie.model_validate({"title": "no id"})
        except pydantic.ValidationError as e:
            self.assertIsInstance(classify(e), MalformedResponseError)
        self.assertIsInstance(classify(KeyError("results")), MalformedResponseError)

    def test_classified_errors_pass_through(self):
        err = AuthError("expired")
        self.assertIs(classify(err), err)

    def test_retryable_kinds(self):
        retryable = {k for k in ErrorKind if is_retryable(k)}
        self.assertEqual(retryable, {ErrorKind.NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.SERVER})
        self.assertFalse(CacheError("disk").retryable)
        self.assertTrue(error_for_status(502).retryable)


class TestDescribe(unittest.TestCase):
    def test_every_kind_has_a_message(self):
        for cls in (NetworkError, AuthError, NotFoundError, RateLimitedError, ServerError,
                    MalformedResponseError, ValidationError, CacheError):
            report = describe(cls("x"))
            self.assertTrue(report.message)
            self.assertEqual(report.kind, cls.kind)

    def test_auth_asks_for_reauthentication_not_retry(self):
        report = describe(AuthError("expired"))
        self.assertTrue(report.reauthenticate)
        self.assertFalse(report.offer_retry)

    def test_network_offers_retry(self):
        report = describe(NetworkError("offline"))
        self.assertTrue(report.offer_retry)
        self.assertFalse(report.reauthenticate)


if __name__ == "__main__":
    unittest.main()
