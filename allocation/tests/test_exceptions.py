"""
Tests for the API exception handler.

Refused mutations raised through ``Outcome.raise_for_error`` must reach
the client with the full conflict payload rather than DRF's flattened
``detail`` string.
"""
from django.test import SimpleTestCase
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, ValidationError
from rest_framework.settings import api_settings

from ..conflicts import ConflictContext, ConflictType, NotFound, classify_conflict
from ..exceptions import ConflictError, ResourceNotFound, api_exception_handler


class ApiExceptionHandlerTests(SimpleTestCase):
    def setUp(self) -> None:
        self.report = classify_conflict(ConflictType.CAPACITY_EXCEEDED, ConflictContext(
            entity_type='ward', entity={'id': 1, 'name': 'Ward W', 'bed_count': 5},
            current=5, requested=4, label='Ward W', operation='reduce_capacity',
        ))

    def test_conflict_is_422_with_full_payload(self):
        resp = api_exception_handler(ConflictError(self.report), {})

        self.assertEqual(resp.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertFalse(resp.data['ok'])
        self.assertEqual(resp.data['error']['error'], 'CAPACITY_EXCEEDED')
        self.assertEqual(resp.data['error']['ward']['bed_count'], 5)
        self.assertEqual(len(resp.data['error']['suggestions']), 3)

    def test_not_found_is_404(self):
        resp = api_exception_handler(ResourceNotFound(NotFound('ward', 9)), {})

        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data['error']['error'], 'NOT_FOUND')

    def test_other_api_errors_are_normalized(self):
        resp = api_exception_handler(ValidationError({'errors': ['bad']}), {})
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['error']['code'], 'api_error')

        resp = api_exception_handler(NotAuthenticated(), {})
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_unexpected_errors_become_500(self):
        resp = api_exception_handler(RuntimeError('boom'), {})

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data['error']['code'], 'server_error')
        self.assertEqual(resp.data['error']['message'], 'Internal server error.')

    def test_detail_is_unwrapped(self):
        resp = api_exception_handler(NotAuthenticated(), {})

        self.assertEqual(set(resp.data['error']), {'code', 'message'})
        self.assertEqual(str(resp.data['error']['message']), str(NotAuthenticated.default_detail))

    def test_handler_is_installed_for_drf(self):
        self.assertIs(api_settings.EXCEPTION_HANDLER, api_exception_handler)
