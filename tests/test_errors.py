import unittest

from botocore.exceptions import ConnectTimeoutError, NoCredentialsError, ParamValidationError, ReadTimeoutError

from fakes import client_error
from s3_tree.errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    S3TreeError,
    ServiceError,
    ValidationError,
    classify_error,
    is_retryable,
)
from s3_tree.retry import RetryPolicy, call_with_retry


class ClassifyErrorTests(unittest.TestCase):
    def test_client_errors_map_by_code_and_status(self):
        cases = [
            (client_error("NoSuchKey", 404), NotFoundError),
            (client_error("AccessDenied", 403), AuthError),
            (client_error("Unauthorized", 401), AuthError),
            (client_error("SlowDown", 503), RateLimitedError),
            (client_error("TooManyRequests", 429), RateLimitedError),
            (client_error("InternalError", 500), ServiceError),
            (client_error("Weird", 502), ServiceError),
            (client_error("BucketAlreadyOwnedByYou", 409), ValidationError),
        ]
        for error, expected in cases:
            with self.subTest(code=error.response["Error"]["Code"]):
                self.assertIsInstance(classify_error(error), expected)

    def test_context_and_details_are_kept(self):
        error = classify_error(client_error("NoSuchBucket", 404, message="gone"), "Failed to list")

        self.assertEqual("Failed to list: gone", str(error))
        self.assertEqual("NoSuchBucket", error.code)
        self.assertEqual(404, error.status_code)

    def test_transport_errors_are_network_errors(self):
        error = classify_error(ConnectTimeoutError(endpoint_url="https://s3.example.com"))

        self.assertIsInstance(error, NetworkError)
        self.assertTrue(error.retryable)

    def test_read_timeouts_are_network_errors(self):
        self.assertIsInstance(classify_error(ReadTimeoutError(endpoint_url="https://s3.example.com")), NetworkError)

    def test_local_botocore_errors_are_not_retryable(self):
        missing = classify_error(NoCredentialsError())
        invalid = classify_error(ParamValidationError(report="Bucket is required"))

        self.assertIsInstance(missing, AuthError)
        self.assertIsInstance(invalid, ValidationError)
        self.assertFalse(is_retryable(missing))
        self.assertFalse(is_retryable(invalid))

    def test_classified_errors_pass_through(self):
        original = AuthError("denied")

        self.assertIs(original, classify_error(original))

    def test_retryable_classes(self):
        self.assertTrue(is_retryable(ServiceError()))
        self.assertTrue(is_retryable(RateLimitedError()))
        self.assertFalse(is_retryable(NotFoundError()))
        self.assertFalse(is_retryable(ValueError()))


class CallWithRetryTests(unittest.TestCase):
    def test_delays_double_per_attempt(self):
        sleeps = []

        def operation():
            raise client_error("SlowDown", 503)

        with self.assertRaises(RateLimitedError):
            call_with_retry(operation, policy=RetryPolicy(max_retries=3, base_delay=0.5), sleep=sleeps.append)

        self.assertEqual([0.5, 1.0, 2.0], sleeps)

    def test_retries_are_logged_as_warnings(self):
        outcomes = [client_error("InternalError", 500), "ok"]

        def operation():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        with self.assertLogs("s3_tree.retry", level="WARNING") as logs:
            self.assertEqual("ok", call_with_retry(operation, context="listing", sleep=lambda _: None))

        self.assertEqual(1, len(logs.records))

    def test_gives_up_after_budget(self):
        sleeps = []
        attempts = []

        def operation():
            attempts.append(1)
            raise client_error("ServiceUnavailable", 503)

        with self.assertRaises(ServiceError) as ctx:
            call_with_retry(operation, policy=RetryPolicy(max_retries=2, base_delay=1.0), sleep=sleeps.append)

        self.assertEqual(3, len(attempts))
        self.assertEqual([1.0, 2.0], sleeps)
        self.assertIsNotNone(ctx.exception.__cause__)

    def test_non_storage_errors_propagate_untouched(self):
        def operation():
            raise KeyError("boom")

        with self.assertRaises(KeyError):
            call_with_retry(operation, sleep=self.fail)

    def test_already_classified_transient_errors_are_retried(self):
        outcomes = [ServiceError("busy"), "ok"]
        sleeps = []

        def operation():
            outcome = outcomes.pop(0)
            if isinstance(outcome, S3TreeError):
                raise outcome
            return outcome

        self.assertEqual("ok", call_with_retry(operation, sleep=sleeps.append))
        self.assertEqual([1.0], sleeps)


if __name__ == "__main__":
    unittest.main()
