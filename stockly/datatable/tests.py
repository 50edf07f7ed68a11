"""
Test suite for the data table pipeline
Tests: query validation, ordering/search mapping, URL params, URL state tokens,
page fetchers and the table-state endpoints
"""
from unittest import mock

from django.db import OperationalError
from django.http import QueryDict
from django.test import TestCase
from rest_framework import status
from stockly.core.models import ActivityLog, Company
from stockly.core.results import ActionError
from stockly.core.test_utils import AuthenticatedAPIClient, TestDataFactory
from stockly.datatable.fetch import ROW_COUNT_NONE, fetch_data_table_page, fetch_table
from stockly.datatable.params import (
    get_data_table_search_params,
    get_text_query_from_search_params,
    parse_page_index,
    parse_page_size,
    parse_sort_param,
)
from stockly.datatable.query import (
    build_data_table_icontains_search,
    get_data_table_order_by,
    get_data_table_pagination,
    get_data_table_search_term,
    parse_data_table_query,
)
from stockly.datatable.tokens import (
    InvalidUrlStateToken,
    decrypt_data_table_query_token,
    decrypt_url_state,
    encrypt_data_table_query_token,
    encrypt_url_state,
)


class DataTableQueryTests(TestCase):
    """Test query validation and ORM mapping"""

    def test_parse_applies_defaults(self):
        """Test optional fields get their defaults"""
        query = parse_data_table_query({'pageIndex': 2, 'pageSize': 20})
        self.assertEqual(query, {
            'pageIndex': 2,
            'pageSize': 20,
            'sorting': [],
            'globalFilter': '',
            'columnFilters': [],
        })

    def test_parse_normalizes_sorting_desc(self):
        """Test a missing desc flag becomes False"""
        query = parse_data_table_query({'pageIndex': 0, 'pageSize': 10, 'sorting': [{'id': 'action'}]})
        self.assertEqual(query['sorting'], [{'id': 'action', 'desc': False}])

    def test_parse_rejects_numeric_strings(self):
        """Test page numbers must be JSON numbers"""
        with self.assertRaises(ActionError) as ctx:
            parse_data_table_query({'pageIndex': '0', 'pageSize': 10})
        self.assertEqual(ctx.exception.code, 'INVALID_INPUT')
        self.assertIn('pageIndex', ctx.exception.field_errors)

    def test_parse_rejects_oversized_page(self):
        """Test pageSize is capped at 500"""
        with self.assertRaises(ActionError) as ctx:
            parse_data_table_query({'pageIndex': 0, 'pageSize': 501})
        self.assertIn('pageSize', ctx.exception.field_errors)

    def test_parse_rejects_blank_sort_id(self):
        """Test sort ids must not be empty"""
        with self.assertRaises(ActionError) as ctx:
            parse_data_table_query({'pageIndex': 0, 'pageSize': 10, 'sorting': [{'id': ''}]})
        self.assertIn('sorting.0.id', ctx.exception.field_errors)

    def test_parse_rejects_non_string_ids_and_filters(self):
        """Test sort ids and globalFilter must be JSON strings"""
        with self.assertRaises(ActionError) as ctx:
            parse_data_table_query({'pageIndex': 0, 'pageSize': 10, 'globalFilter': 5, 'sorting': [{'id': 7}]})
        self.assertIn('globalFilter', ctx.exception.field_errors)
        self.assertIn('sorting.0.id', ctx.exception.field_errors)

        with self.assertRaises(ActionError) as ctx:
            parse_data_table_query({'pageIndex': 0, 'pageSize': 10, 'columnFilters': [{'id': 3, 'value': 'x'}]})
        self.assertIn('columnFilters.0.id', ctx.exception.field_errors)

    def test_parse_rejects_non_boolean_desc(self):
        """Test desc only accepts true/false"""
        for value in ('yes', 'true', 1):
            with self.assertRaises(ActionError) as ctx:
                parse_data_table_query({'pageIndex': 0, 'pageSize': 10, 'sorting': [{'id': 'action', 'desc': value}]})
            self.assertIn('sorting.0.desc', ctx.exception.field_errors)

        query = parse_data_table_query({'pageIndex': 0, 'pageSize': 10, 'sorting': [{'id': 'action', 'desc': True}]})
        self.assertEqual(query['sorting'], [{'id': 'action', 'desc': True}])

    def test_pagination(self):
        """Test limit/offset come from page index and size"""
        self.assertEqual(
            get_data_table_pagination({'pageIndex': 3, 'pageSize': 20}),
            {'pageIndex': 3, 'pageSize': 20, 'limit': 20, 'offset': 60},
        )

    def test_search_term_priority(self):
        """Test globalFilter wins over the first string column filter"""
        self.assertEqual(get_data_table_search_term({'globalFilter': '  abc ', 'columnFilters': []}), 'abc')
        self.assertEqual(
            get_data_table_search_term({'globalFilter': ' ', 'columnFilters': [{'id': 'a', 'value': ' x '}]}),
            'x',
        )
        self.assertEqual(
            get_data_table_search_term({'globalFilter': '', 'columnFilters': [{'id': 'a', 'value': 5}]}),
            '',
        )

    def test_icontains_search(self):
        """Test the search is an OR over columns, None when blank"""
        self.assertIsNone(build_data_table_icontains_search('  ', ['name']))
        self.assertIsNone(build_data_table_icontains_search('x', []))
        condition = build_data_table_icontains_search('shirt', ['name', 'sku'])
        self.assertEqual(condition.connector, 'OR')
        self.assertEqual(len(condition.children), 2)

    def test_order_by_mapping(self):
        """Test known sort ids are mapped and unknown ones ignored"""
        column_map = {'created_at': 'created_at', 'actor': 'actor_user__username'}
        default = [{'id': 'created_at', 'desc': True}]
        self.assertEqual(
            get_data_table_order_by([{'id': 'actor', 'desc': False}, {'id': 'nope', 'desc': True}], column_map, default),
            ['actor_user__username'],
        )
        self.assertEqual(get_data_table_order_by([], column_map, default), ['-created_at'])
        self.assertEqual(get_data_table_order_by([{'id': 'nope'}], column_map, default), ['-created_at'])


class SearchParamsTests(TestCase):
    """Test URL search param helpers"""

    def test_page_index_is_one_based(self):
        """Test URL pages are converted to 0-based indexes"""
        self.assertEqual(parse_page_index('3'), 2)
        self.assertEqual(parse_page_index('2.7'), 1)
        self.assertEqual(parse_page_index(None), 0)
        self.assertEqual(parse_page_index('0'), 0)
        self.assertEqual(parse_page_index('-4'), 0)
        self.assertEqual(parse_page_index('abc'), 0)

    def test_page_size_must_be_an_option(self):
        """Test page sizes outside the options fall back"""
        self.assertEqual(parse_page_size('50'), 50)
        self.assertEqual(parse_page_size('30'), 10)
        self.assertEqual(parse_page_size('20.5'), 10)
        self.assertEqual(parse_page_size(None, fallback=20), 20)

    def test_text_query(self):
        """Test the text query is trimmed and truncated"""
        params = QueryDict(mutable=True)
        params.setlist('q', ['  hello  ', 'ignored'])
        self.assertEqual(get_text_query_from_search_params(params), 'hello')
        self.assertEqual(get_text_query_from_search_params({'q': 'abcdef'}, max_length=3), 'abc')
        self.assertEqual(get_text_query_from_search_params({'q': 'abcdef'}, max_length=0), 'abcdef')
        self.assertIsNone(get_text_query_from_search_params({'q': '   '}))

    def test_prefixed_params(self):
        """Test a URL state key namespaces the params"""
        params = QueryDict('logs_page=2&logs_pageSize=20&logs_q=abc&page=9')
        self.assertEqual(
            get_data_table_search_params(params, url_state_key='logs'),
            {'pageIndex': 1, 'pageSize': 20, 'q': 'abc'},
        )

    def test_sort_param(self):
        """Test the sort param parses into sorting items"""
        self.assertEqual(
            parse_sort_param('-created_at, action,,-'),
            [{'id': 'created_at', 'desc': True}, {'id': 'action', 'desc': False}],
        )


class UrlStateTokenTests(TestCase):
    """Test sealing and opening URL state tokens"""

    def test_round_trip(self):
        """Test a value survives encrypt/decrypt"""
        value = {'pageIndex': 1, 'pageSize': 20, 'q': 'héllo'}
        self.assertEqual(decrypt_url_state(encrypt_url_state(value)), value)

    def test_tokens_are_randomized(self):
        """Test each token uses a fresh IV"""
        self.assertNotEqual(encrypt_url_state({'a': 1}), encrypt_url_state({'a': 1}))

    def test_token_is_url_safe(self):
        """Test tokens have no padding or unsafe characters"""
        token = encrypt_url_state({'a': 'b' * 50})
        self.assertNotIn('=', token)
        self.assertNotIn('+', token)
        self.assertNotIn('/', token)

    def test_padded_token_accepted(self):
        """Test tokens carrying base64 padding still decrypt"""
        for size in range(4):
            value = {'a': 'x' * size}
            token = encrypt_url_state(value)
            if len(token) % 4:
                break
        padded = token + '=' * (-len(token) % 4)
        self.assertNotEqual(padded, token)
        self.assertEqual(decrypt_url_state(padded), value)

    def test_tampered_token_rejected(self):
        """Test a modified token fails authentication"""
        token = encrypt_url_state({'a': 1})
        tampered = token[:-2] + ('AA' if token[-2:] != 'AA' else 'BB')
        with self.assertRaises(InvalidUrlStateToken):
            decrypt_url_state(tampered)

    def test_short_or_empty_token_rejected(self):
        """Test short and empty tokens are rejected"""
        with self.assertRaises(InvalidUrlStateToken):
            decrypt_url_state('')
        with self.assertRaises(InvalidUrlStateToken):
            decrypt_url_state('abcd')

    def test_query_token_revalidated(self):
        """Test a token holding an invalid query is INVALID_INPUT"""
        token = encrypt_url_state({'pageIndex': -1, 'pageSize': 10})
        with self.assertRaises(ActionError) as ctx:
            decrypt_data_table_query_token(token)
        self.assertEqual(ctx.exception.message, 'Invalid URL state.')

    def test_query_token_round_trip(self):
        """Test a data table query round-trips normalized"""
        token = encrypt_data_table_query_token({'pageIndex': 0, 'pageSize': 20, 'sorting': [{'id': 'action'}]})['token']
        query = decrypt_data_table_query_token(token)
        self.assertEqual(query['sorting'], [{'id': 'action', 'desc': False}])


class FetchTests(TestCase):
    """Test the page fetchers against company rows"""

    def setUp(self):
        for index in range(25):
            TestDataFactory.create_company(name=f'Company {index:02d}', slug=f'company-{index:02d}')

    def _build_queryset(self, ctx, query):
        return Company.objects.all()

    def _serialize(self, row, ctx):
        return {'slug': row.slug}

    def test_data_table_page(self):
        """Test rows and rowCount of a data table page"""
        page = fetch_data_table_page(
            payload={'pageIndex': 2, 'pageSize': 10},
            build_queryset=self._build_queryset,
            build_order_by=lambda ctx, query: ['slug'],
            serialize_row=self._serialize,
            error_tag='TEST_FETCH_ERROR',
        )
        self.assertEqual(page['rowCount'], 25)
        self.assertEqual([row['slug'] for row in page['rows']], [f'company-{i:02d}' for i in range(20, 25)])

    def test_authorize_runs_before_query(self):
        """Test authorization failures propagate unchanged"""
        def deny():
            raise ActionError('FORBIDDEN', 'Nope.')

        build_queryset = mock.Mock()
        with self.assertRaises(ActionError) as ctx:
            fetch_data_table_page(
                payload={'pageIndex': 0, 'pageSize': 10},
                authorize=deny,
                build_queryset=build_queryset,
                serialize_row=self._serialize,
                error_tag='TEST_FETCH_ERROR',
            )
        self.assertEqual(ctx.exception.code, 'FORBIDDEN')
        build_queryset.assert_not_called()

    def test_database_failure_is_internal(self):
        """Test unexpected failures become INTERNAL with the caller's message"""
        def broken(ctx, query):
            raise OperationalError('connection refused')

        with self.assertRaises(ActionError) as ctx:
            fetch_data_table_page(
                payload={'pageIndex': 0, 'pageSize': 10},
                build_queryset=broken,
                serialize_row=self._serialize,
                error_tag='TEST_FETCH_ERROR',
                user_error_message='Could not load companies.',
            )
        self.assertEqual(ctx.exception.code, 'INTERNAL')
        self.assertEqual(ctx.exception.message, 'Could not load companies.')

    def test_table_meta(self):
        """Test fetch_table meta with an exact count"""
        page = fetch_table(
            payload={'pageIndex': 1, 'pageSize': 10, 'q': 'company-1'},
            build_queryset=self._build_queryset,
            build_where=lambda ctx, query: build_data_table_icontains_search(query['q'], ['slug']),
            order_by=['slug'],
            serialize_row=self._serialize,
            error_tag='TEST_FETCH_ERROR',
        )
        self.assertEqual(page['meta']['rowCount'], 10)
        self.assertEqual(page['meta']['pageCount'], 1)
        self.assertFalse(page['meta']['hasNextPage'])
        self.assertTrue(page['meta']['hasPrevPage'])
        self.assertEqual(page['data'], [])

    def test_table_max_page_size(self):
        """Test max_page_size clamps the requested size"""
        page = fetch_table(
            payload={'pageIndex': 0, 'pageSize': 100},
            build_queryset=self._build_queryset,
            order_by=['slug'],
            serialize_row=self._serialize,
            error_tag='TEST_FETCH_ERROR',
            max_page_size=5,
        )
        self.assertEqual(page['meta']['pageSize'], 5)
        self.assertEqual(len(page['data']), 5)

    def test_table_without_count(self):
        """Test row_count_mode none skips the count and guesses next pages"""
        page = fetch_table(
            payload={'pageIndex': 0, 'pageSize': 10},
            build_queryset=self._build_queryset,
            order_by=['slug'],
            serialize_row=self._serialize,
            error_tag='TEST_FETCH_ERROR',
            row_count_mode=ROW_COUNT_NONE,
        )
        self.assertEqual(page['meta']['rowCountMode'], 'none')
        self.assertEqual(page['meta']['rowCount'], 10)
        self.assertTrue(page['meta']['hasNextPage'])


class TableStateAPITests(TestCase):
    """Test the table-state endpoints"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.admin = TestDataFactory.create_member(self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_encrypt_then_decrypt(self):
        """Test a query sealed by the API can be opened again"""
        query = {'pageIndex': 1, 'pageSize': 20, 'globalFilter': 'abc'}
        response = self.client.post('/api/v1/table-state/encrypt/', query, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        token = response.data['data']['token']

        response = self.client.post('/api/v1/table-state/decrypt/', {'token': token}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['globalFilter'], 'abc')
        self.assertEqual(response.data['data']['pageIndex'], 1)

    def test_decrypt_garbage(self):
        """Test an invalid token is INVALID_INPUT"""
        response = self.client.post('/api/v1/table-state/decrypt/', {'token': 'garbage'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['message'], 'Invalid URL state.')

    def test_activity_logs_accept_state_token(self):
        """Test list endpoints read the encrypted state param"""
        ActivityLog.objects.create(company=self.company, actor_user=self.admin, action='products.create')
        ActivityLog.objects.create(company=self.company, actor_user=self.admin, action='products.update')
        token = encrypt_data_table_query_token({'pageIndex': 0, 'pageSize': 10, 'globalFilter': 'update'})['token']
        response = self.client.get('/api/v1/activity-logs/', {'state': token})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['rowCount'], 1)

    def test_requires_authentication(self):
        """Test the endpoints need a session"""
        self.client.logout()
        response = self.client.post('/api/v1/table-state/encrypt/', {'pageIndex': 0, 'pageSize': 10}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
