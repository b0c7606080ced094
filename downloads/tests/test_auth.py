"""
Tests for downloads/auth.py
"""

import json
from datetime import timedelta
from unittest.mock import patch

from django.core.cache import caches
from django.http import JsonResponse
from django.test import RequestFactory, TestCase
from django.utils import timezone

from downloads.auth import admit, extract_api_key, get_requested_format, require_api_key
from downloads.models import ApiKey
from downloads.ratelimit import RateLimiter


class ExtractApiKeyTest(TestCase):
    """Test where the API key is read from"""

    def setUp(self):
        self.factory = RequestFactory()

    def test_bearer_header(self):
        request = self.factory.get('/', HTTP_AUTHORIZATION='Bearer yt_abc')
        self.assertEqual(extract_api_key(request), 'yt_abc')

    def test_x_api_key_header(self):
        request = self.factory.get('/', HTTP_X_API_KEY='yt_def')
        self.assertEqual(extract_api_key(request), 'yt_def')

    def test_query_parameter(self):
        request = self.factory.get('/', {'api_key': 'yt_ghi'})
        self.assertEqual(extract_api_key(request), 'yt_ghi')

    def test_form_parameter(self):
        request = self.factory.post('/', {'api_key': 'yt_jkl'})
        self.assertEqual(extract_api_key(request), 'yt_jkl')

    def test_bearer_wins(self):
        request = self.factory.get(
            '/', {'api_key': 'yt_param'}, HTTP_AUTHORIZATION='Bearer yt_bearer', HTTP_X_API_KEY='yt_header'
        )
        self.assertEqual(extract_api_key(request), 'yt_bearer')

    def test_missing(self):
        self.assertIsNone(extract_api_key(self.factory.get('/')))

    def test_requested_format_from_json(self):
        request = self.factory.post(
            '/', data=json.dumps({'format': 'mp3'}), content_type='application/json'
        )
        self.assertEqual(get_requested_format(request), 'mp3')

    def test_requested_format_from_query(self):
        self.assertEqual(get_requested_format(self.factory.get('/', {'format': 'webm'})), 'webm')


class AdmitTest(TestCase):
    """Test the ordered admission checks"""

    def setUp(self):
        self.factory = RequestFactory()
        self.cache = caches['ratelimit']
        self.cache.clear()
        self.limiter = RateLimiter(self.cache)

    def tearDown(self):
        self.cache.clear()

    def request_with(self, key, ip='127.0.0.1'):
        return self.factory.get('/', HTTP_AUTHORIZATION=f'Bearer {key}', REMOTE_ADDR=ip)

    def test_missing_key(self):
        admission = admit(self.factory.get('/'), limiter=self.limiter)
        self.assertFalse(admission.ok)
        self.assertEqual(admission.code, 'UNAUTHORIZED')
        self.assertEqual(admission.status, 401)

    def test_unknown_key(self):
        admission = admit(self.request_with('yt_unknown'), limiter=self.limiter)
        self.assertEqual(admission.code, 'INVALID_API_KEY')
        self.assertEqual(admission.status, 401)

    def test_inactive_key(self):
        _, plaintext = ApiKey.objects.create_key('client', is_active=False)
        admission = admit(self.request_with(plaintext), limiter=self.limiter)
        self.assertEqual(admission.code, 'API_KEY_INACTIVE')
        self.assertEqual(admission.status, 401)

    def test_expired_key(self):
        _, plaintext = ApiKey.objects.create_key(
            'client', expires_at=timezone.now() - timedelta(seconds=1)
        )
        admission = admit(self.request_with(plaintext), limiter=self.limiter)
        self.assertEqual(admission.code, 'API_KEY_INACTIVE')

    def test_ip_not_allowed(self):
        _, plaintext = ApiKey.objects.create_key('client', allowed_ips=['10.0.0.1'])
        admission = admit(self.request_with(plaintext, ip='10.0.0.2'), limiter=self.limiter)
        self.assertEqual(admission.code, 'IP_NOT_ALLOWED')
        self.assertEqual(admission.status, 403)

    def test_rate_limited(self):
        api_key, plaintext = ApiKey.objects.create_key('client', rate_limit_per_minute=2)

        self.assertTrue(admit(self.request_with(plaintext), limiter=self.limiter).ok)
        self.assertTrue(admit(self.request_with(plaintext), limiter=self.limiter).ok)
        admission = admit(self.request_with(plaintext), limiter=self.limiter)

        self.assertEqual(admission.code, 'RATE_LIMIT_EXCEEDED')
        self.assertEqual(admission.status, 429)
        self.assertEqual(admission.extra['exceeded'], ['minute'])
        self.assertEqual(admission.extra['rate_limits']['minute'], {'used': 2, 'limit': 2})

        api_key.refresh_from_db()
        self.assertEqual(api_key.usage_count, 2)

    def test_format_not_allowed(self):
        _, plaintext = ApiKey.objects.create_key('client', allowed_formats=['mp3'])
        admission = admit(self.request_with(plaintext), requested_format='mp4', limiter=self.limiter)
        self.assertEqual(admission.code, 'FORMAT_NOT_ALLOWED')
        self.assertEqual(admission.status, 403)

    def test_format_denial_does_not_consume_rate_limit(self):
        api_key, plaintext = ApiKey.objects.create_key(
            'client', allowed_formats=['mp3'], rate_limit_per_minute=1
        )
        admit(self.request_with(plaintext), requested_format='mp4', limiter=self.limiter)

        self.assertEqual(self.limiter.usage(api_key)['minute']['used'], 0)
        self.assertTrue(admit(self.request_with(plaintext), requested_format='mp3', limiter=self.limiter).ok)

    def test_ip_check_runs_before_rate_limit(self):
        """Test that a denied IP does not use up the key's rate limit"""
        api_key, plaintext = ApiKey.objects.create_key('client', allowed_ips=['10.0.0.1'])
        admit(self.request_with(plaintext, ip='10.0.0.2'), limiter=self.limiter)
        self.assertEqual(self.limiter.usage(api_key)['minute']['used'], 0)

    def test_admitted_records_usage(self):
        api_key, plaintext = ApiKey.objects.create_key('client')
        admission = admit(self.request_with(plaintext), limiter=self.limiter)

        self.assertTrue(admission.ok)
        self.assertEqual(admission.api_key, api_key)
        api_key.refresh_from_db()
        self.assertEqual(api_key.usage_count, 1)
        self.assertIsNotNone(api_key.last_used_at)

    def test_usage_failure_does_not_block(self):
        _, plaintext = ApiKey.objects.create_key('client')
        with patch.object(ApiKey, 'record_usage', side_effect=RuntimeError('db locked')):
            with self.assertLogs('downloads.auth', level='ERROR'):
                admission = admit(self.request_with(plaintext), limiter=self.limiter)
        self.assertTrue(admission.ok)


class RequireApiKeyTest(TestCase):
    """Test the view decorator"""

    def setUp(self):
        self.factory = RequestFactory()
        caches['ratelimit'].clear()

        @require_api_key
        def view(request):
            return JsonResponse({'key': request.api_key.name})

        self.view = view

    def test_denied_request_gets_json_error(self):
        response = self.view(self.factory.get('/'))
        self.assertEqual(response.status_code, 401)
        body = json.loads(response.content)
        self.assertFalse(body['success'])
        self.assertEqual(body['error']['code'], 'UNAUTHORIZED')

    def test_admitted_request_reaches_view(self):
        _, plaintext = ApiKey.objects.create_key('client')
        response = self.view(self.factory.get('/', HTTP_X_API_KEY=plaintext))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content), {'key': 'client'})
