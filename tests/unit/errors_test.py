import asyncio
from ddt import ddt, data, unpack
from unittest import TestCase

import requests

from resilient import errors
from resilient.retry import ExponentialBackoff, FixedDelay, is_retryable


@ddt
class TestErrorForStatus(TestCase):
    @data(200, 201, 204, 299)
    def test_success_statuses(self, status):
        self.assertIsNone(errors.error_for_status(status))

    @data(
        (401, errors.Unauthorized, 401),
        (403, errors.Forbidden, 403),
        (404, errors.NotFound, 404),
        (429, errors.RateLimited, 429),
        (503, errors.ServiceUnavailable, 503),
        (500, errors.ServerError, 500),
        (502, errors.ServerError, 502),
        (400, errors.ServerError, 400),
        (304, errors.ServerError, 304),
    )
    @unpack
    def test_failure_statuses(self, status, expected_type, expected_code):
        error = errors.error_for_status(status)

        self.assertIsInstance(error, expected_type)
        self.assertEqual(expected_code, error.code)

    def test_service_unavailable_is_a_server_error(self):
        self.assertIsInstance(errors.error_for_status(503), errors.ServerError)

    def test_server_error_message_uses_reason(self):
        error = errors.error_for_status(502, 'Bad Gateway')

        self.assertEqual('Server error (502): Bad Gateway', error.message)


@ddt
class TestRetryable(TestCase):
    @data(
        (errors.Timeout(), True),
        (errors.TransportError('reset'), True),
        (errors.ServerError(500), True),
        (errors.ServerError(599), True),
        (errors.ServiceUnavailable(), True),
        (errors.ServerError(400), False),
        (errors.Unauthorized(), False),
        (errors.Forbidden(), False),
        (errors.NotFound(), False),
        (errors.RateLimited(), False),
        (errors.DecodingError('bad'), False),
        (errors.EncodingError('bad'), False),
        (errors.NoData(), False),
        (errors.Cancelled(), False),
        (errors.NoConnectivity(), False),
        (errors.InvalidURL(), False),
        (errors.Unknown('?'), False),
        (ValueError('not ours'), False),
    )
    @unpack
    def test_is_retryable(self, error, expected):
        self.assertEqual(expected, is_retryable(error))


@ddt
class TestMapException(TestCase):
    @data(
        (requests.exceptions.ReadTimeout('slow'), errors.Timeout),
        (requests.exceptions.ConnectTimeout('slow'), errors.Timeout),
        (requests.exceptions.ConnectionError('reset'), errors.TransportError),
        (requests.exceptions.ChunkedEncodingError('broken'), errors.TransportError),
        (requests.exceptions.MissingSchema('no scheme'), errors.InvalidURL),
        (requests.exceptions.InvalidURL('bad'), errors.InvalidURL),
        (asyncio.CancelledError(), errors.Cancelled),
        (ConnectionResetError('reset'), errors.TransportError),
        (RuntimeError('boom'), errors.Unknown),
    )
    @unpack
    def test_map_exception(self, error, expected_type):
        self.assertIsInstance(errors.map_exception(error), expected_type)

    def test_network_errors_pass_through(self):
        error = errors.NotFound()

        self.assertIs(error, errors.map_exception(error))


class TestNetworkError(TestCase):
    def test_equality_is_by_kind_code_and_message(self):
        self.assertEqual(errors.ServerError(500, 'x'), errors.ServerError(500, 'x'))
        self.assertNotEqual(errors.ServerError(500, 'x'), errors.ServerError(501, 'x'))
        self.assertNotEqual(errors.Timeout(), errors.Cancelled())

    def test_kind_and_code(self):
        error = errors.DecodingError('unexpected token')

        self.assertEqual('DecodingError', error.kind)
        self.assertEqual(-1002, error.code)
        self.assertEqual('Failed to decode response: unexpected token', str(error))


class TestRetryPolicies(TestCase):
    def test_fixed_delay(self):
        policy = FixedDelay(0.5)

        self.assertEqual([0.5, 0.5, 0.5], [policy.delay(n) for n in (1, 2, 3)])

    def test_exponential_backoff_is_capped(self):
        policy = ExponentialBackoff(base=1.0, max_delay=5.0)

        self.assertEqual([1.0, 2.0, 4.0, 5.0, 5.0], [policy.delay(n) for n in (1, 2, 3, 4, 5)])

    def test_negative_delays_are_rejected(self):
        with self.assertRaises(ValueError):
            FixedDelay(-1)
        with self.assertRaises(ValueError):
            ExponentialBackoff(base=-1)
