"""
Test suite for the core module
Tests: result envelope, error presentation, login and sessions, impersonation,
tenancy CRUD, activity/system logs and the seed command
"""
from io import StringIO
from unittest import mock

from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import OperationalError, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework import status
from stockly.core.authentication import issue_session_tokens
from stockly.core.errors import classify_error, get_error_presentation, sanitize_error_text
from stockly.core.logs import fetch_system_logs_page
from stockly.core.models import ActivityLog, Company, Membership, User
from stockly.core.results import ActionError, CONFLICT, err, flatten_field_errors, get_http_status, ok
from stockly.core.test_utils import AuthenticatedAPIClient, TestDataFactory
from stockly.core.utils import build_company_asset_folder_segment, log_activity, to_fixed_scale_text


class ResultEnvelopeTests(TestCase):
    """Test the ok/err envelope helpers"""

    def test_ok_wraps_data(self):
        """Test ok() wraps the payload"""
        self.assertEqual(ok({'id': 1}), {'ok': True, 'data': {'id': 1}})

    def test_err_omits_empty_field_errors(self):
        """Test err() only includes field_errors when present"""
        self.assertEqual(err('NOT_FOUND', 'Missing.'), {'ok': False, 'error': {'code': 'NOT_FOUND', 'message': 'Missing.'}})
        payload = err('INVALID_INPUT', 'Bad.', {'name': ['Required.']})
        self.assertEqual(payload['error']['field_errors'], {'name': ['Required.']})

    def test_http_status_mapping(self):
        """Test every error code maps to its HTTP status"""
        self.assertEqual(get_http_status('UNAUTHENTICATED'), 401)
        self.assertEqual(get_http_status('FORBIDDEN'), 403)
        self.assertEqual(get_http_status('INVALID_INPUT'), 400)
        self.assertEqual(get_http_status('NOT_FOUND'), 404)
        self.assertEqual(get_http_status('CONFLICT'), 409)
        self.assertEqual(get_http_status('INTERNAL'), 500)

    def test_flatten_nested_field_errors(self):
        """Test nested serializer errors flatten to dotted paths"""
        errors = {
            'name': ['Required.'],
            'items': [{}, {'qty': ['Too big.']}],
            'variants': {'0': {'sku': ['Duplicate.']}},
        }
        self.assertEqual(flatten_field_errors(errors), {
            'name': ['Required.'],
            'items.1.qty': ['Too big.'],
            'variants.0.sku': ['Duplicate.'],
        })

    def test_action_error_envelope(self):
        """Test ActionError carries its HTTP status and envelope"""
        error = ActionError(CONFLICT, 'Already there.')
        self.assertEqual(error.status_code, 409)
        self.assertEqual(error.as_envelope(), {'ok': False, 'error': {'code': 'CONFLICT', 'message': 'Already there.'}})


class ErrorPresentationTests(TestCase):
    """Test error classification and redaction"""

    def test_classify_database_error(self):
        """Test database errors are classified as DATABASE"""
        self.assertEqual(classify_error(OperationalError('could not connect to server')), 'DATABASE')

    def test_classify_network_error(self):
        """Test network errors are classified as NETWORK"""
        self.assertEqual(classify_error(ConnectionError('Connection refused')), 'NETWORK')

    def test_classify_unknown_error(self):
        """Test other errors are UNKNOWN"""
        self.assertEqual(classify_error(ValueError('boom')), 'UNKNOWN')

    def test_sanitize_redacts_credentials(self):
        """Test URL credentials and password params are redacted"""
        text = sanitize_error_text('postgres://stockly:s3cret@db:5432/app?password=hunter2')
        self.assertNotIn('s3cret', text)
        self.assertNotIn('hunter2', text)

    def test_presentation_has_user_and_developer_text(self):
        """Test the presentation never leaks the raw message to the user"""
        presentation = get_error_presentation(OperationalError('password=abc connection refused'))
        self.assertEqual(presentation['kind'], 'DATABASE')
        self.assertNotIn('abc', str(presentation['developer']))
        self.assertNotIn('password', str(presentation['user']))


class UtilsTests(TestCase):
    """Test core utility helpers"""

    def setUp(self):
        self.company = TestDataFactory.create_company(name='Acme Store')
        self.user = TestDataFactory.create_member(self.company)

    def test_to_fixed_scale_text(self):
        """Test numbers are rendered with a fixed number of decimals"""
        self.assertEqual(to_fixed_scale_text(5), '5.00')
        self.assertEqual(to_fixed_scale_text('1.005', scale=3), '1.005')

    def test_company_asset_folder_segment(self):
        """Test the folder segment is slug plus short id"""
        segment = build_company_asset_folder_segment(self.company.name, self.company.id)
        self.assertEqual(segment, f"acme-store-{str(self.company.id)[:8]}")

    def test_log_activity_accepts_company_id(self):
        """Test log_activity works with a company id"""
        log = log_activity(self.company.id, actor=self.user, action='products.create', target_id=123)
        self.assertEqual(log.company_id, self.company.id)
        self.assertEqual(log.target_id, '123')

    def test_log_activity_skips_without_action(self):
        """Test log_activity returns None when the action is missing"""
        self.assertIsNone(log_activity(self.company, actor=self.user))
        self.assertEqual(ActivityLog.objects.count(), 0)


@override_settings(LOGIN_FAILURE_DELAY_SECONDS=0)
class LoginAPITests(TestCase):
    """Test login, refresh and the current user endpoint"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.admin = TestDataFactory.create_member(self.company)
        self.superadmin = TestDataFactory.create_superadmin()
        self.client = AuthenticatedAPIClient()

    def _login(self, username, password='testpass123'):
        return self.client.post('/api/v1/auth/login/', {'username': username, 'password': password}, format='json')

    def test_login_member_scoped_to_company(self):
        """Test a member logs in scoped to the membership company"""
        response = self._login(self.admin.username)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['ok'])
        data = response.data['data']
        self.assertEqual(data['active_company_id'], str(self.company.id))
        self.assertIn('access', data)
        self.assertIn('refresh', data)
        self.assertEqual(data['user']['username'], self.admin.username)
        self.assertTrue(ActivityLog.objects.filter(action='auth.login_success', actor_user=self.admin).exists())

    def test_login_superadmin_has_no_company(self):
        """Test a superadmin logs in without an active company"""
        response = self._login(self.superadmin.username)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['data']['active_company_id'])

    def test_login_wrong_password(self):
        """Test a wrong password is UNAUTHENTICATED and audited"""
        response = self._login(self.admin.username, 'wrong-password')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['ok'])
        self.assertEqual(response.data['error']['code'], 'UNAUTHENTICATED')
        self.assertTrue(ActivityLog.objects.filter(action='auth.login_failed', actor_user=self.admin).exists())

    def test_login_unknown_user(self):
        """Test an unknown user gets the same generic error"""
        response = self._login('nobody')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error']['message'], 'Incorrect username or password.')

    def test_login_without_active_membership(self):
        """Test a user with an inactive membership cannot log in"""
        Membership.objects.filter(user=self.admin).update(status=Membership.STATUS_INACTIVE)
        response = self._login(self.admin.username)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_login_missing_fields(self):
        """Test missing credentials is INVALID_INPUT with field errors"""
        response = self.client.post('/api/v1/auth/login/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'INVALID_INPUT')
        self.assertIn('username', response.data['error']['field_errors'])

    def test_refresh_keeps_company_claim(self):
        """Test a refreshed access token keeps the session scope"""
        tokens = issue_session_tokens(self.admin, self.company.id)
        response = self.client.post('/api/v1/auth/refresh/', {'refresh': tokens['refresh']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['data']['access']}")
        me = self.client.get('/api/v1/auth/me/')
        self.assertEqual(me.data['data']['active_company']['id'], str(self.company.id))

    def test_refresh_invalid_token(self):
        """Test a garbage refresh token is UNAUTHENTICATED"""
        response = self.client.post('/api/v1/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error']['code'], 'UNAUTHENTICATED')

    def test_me_requires_authentication(self):
        """Test the current user endpoint requires a session"""
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['ok'])

    def test_me_capabilities(self):
        """Test capability flags of a company admin"""
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['membership'], {'role': 'ADMIN', 'status': 'ACTIVE'})
        self.assertTrue(data['can_manage_products'])
        self.assertTrue(data['can_view_activity_logs'])
        self.assertFalse(data['can_view_system_logs'])

    def test_me_staff_cannot_manage(self):
        """Test STAFF users are read-only"""
        staff = TestDataFactory.create_member(self.company, system_role=User.SYSTEM_ROLE_STAFF, role=Membership.ROLE_STAFF)
        self.client.authenticate_user(staff)
        data = self.client.get('/api/v1/auth/me/').data['data']
        self.assertFalse(data['can_manage_products'])
        self.assertFalse(data['can_manage_inventory'])
        self.assertFalse(data['can_view_activity_logs'])


class ImpersonationAPITests(TestCase):
    """Test superadmin impersonation"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.superadmin = TestDataFactory.create_superadmin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.superadmin)

    def test_set_impersonation(self):
        """Test a superadmin can scope the session to a company"""
        response = self.client.post('/api/v1/auth/impersonation/', {'company_id': str(self.company.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['active_company_id'], str(self.company.id))
        self.assertEqual(data['company']['slug'], self.company.slug)
        self.assertTrue(ActivityLog.objects.filter(action='superadmin.impersonate.set', company=self.company).exists())

    def test_set_impersonation_unknown_company(self):
        """Test impersonating a missing company is NOT_FOUND"""
        response = self.client.post(
            '/api/v1/auth/impersonation/', {'company_id': '00000000-0000-0000-0000-000000000000'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_clear_impersonation(self):
        """Test clearing impersonation drops the company scope"""
        self.client.authenticate_user(self.superadmin, company=self.company)
        response = self.client.delete('/api/v1/auth/impersonation/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['cleared'])
        self.assertIsNone(response.data['data']['active_company_id'])
        self.assertTrue(ActivityLog.objects.filter(action='superadmin.impersonate.clear').exists())

    def test_non_superadmin_cannot_impersonate(self):
        """Test company admins cannot impersonate"""
        admin = TestDataFactory.create_member(self.company)
        self.client.authenticate_user(admin)
        response = self.client.post('/api/v1/auth/impersonation/', {'company_id': str(self.company.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error']['code'], 'FORBIDDEN')


class CompanyUserAPITests(TestCase):
    """Test superadmin company, user and membership management"""

    def setUp(self):
        self.superadmin = TestDataFactory.create_superadmin()
        self.company = TestDataFactory.create_company(name='Acme', slug='acme')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.superadmin)

    def test_create_company(self):
        """Test creating a company"""
        response = self.client.post('/api/v1/companies/', {'name': 'Beta', 'slug': 'beta'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['slug'], 'beta')

    def test_create_company_duplicate_slug(self):
        """Test a duplicate slug is CONFLICT"""
        response = self.client.post('/api/v1/companies/', {'name': 'Other', 'slug': 'acme'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'CONFLICT')

    def test_update_and_delete_company(self):
        """Test renaming then deleting a company"""
        response = self.client.patch(f'/api/v1/companies/{self.company.id}/', {'name': 'Acme Ltd'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['name'], 'Acme Ltd')

        response = self.client.delete(f'/api/v1/companies/{self.company.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Company.objects.filter(pk=self.company.pk).exists())

    def test_delete_company_with_stock_is_conflict(self):
        """Test a company with ledger rows cannot be deleted"""
        admin = TestDataFactory.create_member(self.company)
        product = TestDataFactory.create_product(self.company)
        TestDataFactory.create_movement(TestDataFactory.default_variant(product), admin, '5')
        response = self.client.delete(f'/api/v1/companies/{self.company.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertTrue(Company.objects.filter(pk=self.company.pk).exists())

    def test_company_detail_not_found(self):
        """Test a missing company is NOT_FOUND in the envelope"""
        response = self.client.get('/api/v1/companies/00000000-0000-0000-0000-000000000000/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['code'], 'NOT_FOUND')

    def test_company_list_requires_superadmin(self):
        """Test company admins cannot list companies"""
        admin = TestDataFactory.create_member(self.company)
        self.client.authenticate_user(admin)
        response = self.client.get('/api/v1/companies/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_user_with_membership(self):
        """Test creating a user together with a membership"""
        data = {
            'username': 'newadmin',
            'email': 'newadmin@test.com',
            'password': 'Sup3r-Secret-Pass',
            'password_confirm': 'Sup3r-Secret-Pass',
            'system_role': 'ADMIN',
            'membership': {'company_id': str(self.company.id), 'role': 'ADMIN'},
        }
        response = self.client.post('/api/v1/users/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['membership']['company']['id'], str(self.company.id))
        self.assertTrue(User.objects.get(username='newadmin').check_password('Sup3r-Secret-Pass'))

    def test_create_user_password_mismatch(self):
        """Test mismatched passwords are INVALID_INPUT on the password field"""
        data = {
            'username': 'newuser',
            'password': 'Sup3r-Secret-Pass',
            'password_confirm': 'different-pass',
        }
        response = self.client.post('/api/v1/users/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data['error']['field_errors'])

    def test_set_and_remove_membership(self):
        """Test setting then removing a user's membership"""
        user = TestDataFactory.create_user()
        url = f'/api/v1/users/{user.id}/membership/'
        response = self.client.put(url, {'company_id': str(self.company.id), 'role': 'STAFF'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['role'], 'STAFF')

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Membership.objects.filter(user=user).exists())

    def test_superadmin_cannot_have_membership(self):
        """Test superadmins are refused a membership"""
        other = TestDataFactory.create_superadmin()
        response = self.client.put(
            f'/api/v1/users/{other.id}/membership/', {'company_id': str(self.company.id)}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cannot_delete_self(self):
        """Test a superadmin cannot delete their own account"""
        response = self.client.delete(f'/api/v1/users/{self.superadmin.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_delete_user(self):
        """Test deleting a user without stock documents"""
        user = TestDataFactory.create_member(self.company)
        response = self.client.delete(f'/api/v1/users/{user.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(User.objects.filter(pk=user.pk).exists())

    def test_delete_user_with_stock_documents_is_conflict(self):
        """Test a user who created stock documents cannot be deleted"""
        admin = TestDataFactory.create_member(self.company)
        variant = TestDataFactory.default_variant(TestDataFactory.create_product(self.company))
        TestDataFactory.create_receiving(self.company, admin, [(variant, '3')])
        response = self.client.delete(f'/api/v1/users/{admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['message'], 'User still has stock transactions.')
        self.assertTrue(User.objects.filter(pk=admin.pk).exists())

    def test_member_cannot_become_superadmin(self):
        """Test a user with a membership cannot be promoted to superadmin"""
        admin = TestDataFactory.create_member(self.company)
        response = self.client.patch(f'/api/v1/users/{admin.id}/', {'system_role': 'SUPERADMIN'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            response.data['error']['field_errors']['system_role'],
            ['Superadmins cannot belong to a company.'],
        )
        admin.refresh_from_db()
        self.assertEqual(admin.system_role, User.SYSTEM_ROLE_ADMIN)

        user = TestDataFactory.create_user()
        response = self.client.patch(f'/api/v1/users/{user.id}/', {'system_role': 'SUPERADMIN'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['system_role'], 'SUPERADMIN')

    def test_unexpected_error_uses_envelope(self):
        """Test an unexpected exception in a view is an INTERNAL envelope"""
        with mock.patch('stockly.core.services.get_capabilities', side_effect=RuntimeError('boom')):
            response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['ok'], False)
        self.assertEqual(response.data['error']['code'], 'INTERNAL')
        self.assertEqual(response.data['error']['message'], 'The system is having trouble. Try again in a moment.')


class ActivityLogAPITests(TestCase):
    """Test the company activity log and system log tables"""

    def setUp(self):
        cache.clear()
        self.company = TestDataFactory.create_company(name='Acme', slug='acme')
        self.other_company = TestDataFactory.create_company(name='Beta', slug='beta')
        self.admin = TestDataFactory.create_member(self.company)
        self.other_admin = TestDataFactory.create_member(self.other_company)
        self.superadmin = TestDataFactory.create_superadmin()
        log_activity(self.company, actor=self.admin, action='products.create', target_type='product', target_id='p1')
        log_activity(self.company, actor=self.admin, action='inventory.receiving.created', target_type='receiving')
        log_activity(self.company, action='system.without_actor')
        log_activity(self.other_company, actor=self.other_admin, action='products.delete')
        self.client = AuthenticatedAPIClient()

    def test_company_logs_are_scoped(self):
        """Test admins only see their company's logs with an actor"""
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/activity-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['rowCount'], 2)
        actions = {row['action'] for row in data['rows']}
        self.assertEqual(actions, {'products.create', 'inventory.receiving.created'})
        self.assertEqual(data['rows'][0]['actor_username'], self.admin.username)

    def test_company_logs_search(self):
        """Test the q param searches action, actor and target"""
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/activity-logs/', {'q': 'receiving'})
        self.assertEqual(response.data['data']['rowCount'], 1)

    def test_company_logs_post_query(self):
        """Test the table query can be POSTed"""
        self.client.authenticate_user(self.admin)
        payload = {'pageIndex': 0, 'pageSize': 1, 'sorting': [{'id': 'action', 'desc': False}]}
        response = self.client.post('/api/v1/activity-logs/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['data']['rows']), 1)
        self.assertEqual(response.data['data']['rows'][0]['action'], 'inventory.receiving.created')

    def test_company_logs_invalid_query(self):
        """Test an invalid table query is INVALID_INPUT"""
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/activity-logs/', {'pageIndex': -1, 'pageSize': 10}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('pageIndex', response.data['error']['field_errors'])

    def test_staff_cannot_view_logs(self):
        """Test staff members are forbidden"""
        staff = TestDataFactory.create_member(self.company, system_role=User.SYSTEM_ROLE_STAFF, role=Membership.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self.client.get('/api/v1/activity-logs/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_superadmin_needs_impersonation(self):
        """Test superadmins must impersonate to read company logs"""
        self.client.authenticate_user(self.superadmin)
        self.assertEqual(self.client.get('/api/v1/activity-logs/').status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(self.superadmin, company=self.other_company)
        response = self.client.get('/api/v1/activity-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['rowCount'], 1)

    def test_activity_log_detail_scoped(self):
        """Test log detail is limited to the active company"""
        other_log = ActivityLog.objects.get(action='products.delete')
        self.client.authenticate_user(self.admin)
        response = self.client.get(f'/api/v1/activity-logs/{other_log.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_system_logs_superadmin_only(self):
        """Test system logs are superadmin only"""
        self.client.authenticate_user(self.admin)
        self.assertEqual(self.client.get('/api/v1/system-logs/').status_code, status.HTTP_403_FORBIDDEN)

    def test_system_logs_span_companies(self):
        """Test system logs include every company and company columns"""
        self.client.authenticate_user(self.superadmin)
        response = self.client.get('/api/v1/system-logs/', {'q': 'beta'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        rows = response.data['data']['rows']
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['company_slug'], 'beta')
        self.assertEqual(rows[0]['company_id'], str(self.other_company.id))


class SystemLogCacheTests(TransactionTestCase):
    """Test system log page caching against commits and rollbacks"""

    def setUp(self):
        cache.clear()
        self.company = TestDataFactory.create_company(name='Acme', slug='acme')
        self.admin = TestDataFactory.create_member(self.company)
        log_activity(self.company, actor=self.admin, action='products.create')

    def fetch(self):
        return fetch_system_logs_page({'pageIndex': 0, 'pageSize': 10}, authorize=lambda: None)

    def test_pages_are_cached(self):
        """Test a repeated query is served from the cache"""
        self.assertEqual(self.fetch()['rowCount'], 1)
        # bulk_create sends no post_save, so nothing invalidates the page
        ActivityLog.objects.bulk_create([
            ActivityLog(company=self.company, actor_user=self.admin, action='products.update'),
        ])
        self.assertEqual(self.fetch()['rowCount'], 1)

    def test_committed_log_invalidates_cache(self):
        """Test a committed activity log invalidates cached pages"""
        self.assertEqual(self.fetch()['rowCount'], 1)
        log_activity(self.company, actor=self.admin, action='products.update')
        self.assertEqual(self.fetch()['rowCount'], 2)

    def test_rolled_back_log_leaves_cache_clean(self):
        """Test a page read inside a rolled back transaction is not cached"""
        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                log_activity(self.company, actor=self.admin, action='products.update')
                self.assertEqual(self.fetch()['rowCount'], 2)
                raise RuntimeError('rollback')

        page = self.fetch()
        self.assertEqual(page['rowCount'], 1)
        self.assertEqual([row['action'] for row in page['rows']], ['products.create'])


class SeedDemoCommandTests(TestCase):
    """Test the seed_demo management command"""

    def test_seed_is_idempotent(self):
        """Test running the seed twice keeps one of each record"""
        for _ in range(2):
            call_command(
                'seed_demo',
                superadmin_password='super-secret-1',
                admin_password='admin-secret-1',
                stdout=StringIO(),
            )
        self.assertEqual(User.objects.filter(system_role=User.SYSTEM_ROLE_SUPERADMIN).count(), 1)
        company = Company.objects.get(slug='demo')
        admin = User.objects.get(username='admin')
        self.assertEqual(admin.membership.company, company)
        self.assertEqual(admin.membership.role, Membership.ROLE_ADMIN)
        self.assertTrue(admin.check_password('admin-secret-1'))

    def test_seed_requires_passwords(self):
        """Test the seed refuses to run without passwords"""
        with self.assertRaises(CommandError):
            call_command('seed_demo', superadmin_password='', admin_password='', stdout=StringIO())


class MigrationStateTests(TestCase):
    """Test the committed migrations match the models"""

    def test_no_missing_migrations(self):
        """Test makemigrations finds nothing to generate"""
        try:
            call_command('makemigrations', check=True, dry_run=True, stdout=StringIO(), stderr=StringIO())
        except SystemExit:
            self.fail('Models have changes that are not reflected in a migration.')
