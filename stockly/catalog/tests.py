"""
Test suite for the catalog module
Tests: product create/update/delete, variant normalization and code uniqueness,
image ownership checks, product table and ImageKit endpoints
"""
import hashlib
import hmac
from decimal import Decimal
from unittest import mock

import requests
from django.test import TestCase, override_settings
from rest_framework import status
from stockly.catalog import imagekit
from stockly.catalog.models import Product, ProductVariant
from stockly.catalog.services import normalize_variants
from stockly.core.models import ActivityLog, Membership, User
from stockly.core.results import ActionError
from stockly.core.test_utils import AuthenticatedAPIClient, TestDataFactory

IMAGEKIT_SETTINGS = {
    'IMAGEKIT_PRIVATE_KEY': 'private_test_key',
    'IMAGEKIT_PUBLIC_KEY': 'public_test_key',
    'IMAGEKIT_URL_ENDPOINT': 'https://ik.imagekit.io/stockly',
    'IMAGEKIT_API_BASE': 'https://api.imagekit.io/v1',
}


def _response(status_code, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = payload
    return response


class NormalizeVariantsTests(TestCase):
    """Test variant normalization rules"""

    def test_implicit_default_variant(self):
        """Test a product without variants gets one Default variant"""
        variants = normalize_variants({'has_variants': False, 'variants': []}, fallback_default_variant_id='abc')
        self.assertEqual(len(variants), 1)
        self.assertEqual(variants[0]['id'], 'abc')
        self.assertEqual(variants[0]['name'], 'Default')
        self.assertTrue(variants[0]['is_default'])
        self.assertEqual(variants[0]['selling_price'], Decimal('0.00'))

    def test_first_variant_default_when_none_flagged(self):
        """Test exactly one variant ends up default"""
        variants = normalize_variants({'has_variants': True, 'variants': [
            {'name': 'Red', 'selling_price': Decimal('10')},
            {'name': 'Blue', 'selling_price': Decimal('12')},
        ]})
        self.assertEqual([v['is_default'] for v in variants], [True, False])

    def test_only_first_flagged_default_is_kept(self):
        """Test several default flags collapse to the first one"""
        variants = normalize_variants({'has_variants': True, 'variants': [
            {'name': 'Red', 'selling_price': Decimal('10')},
            {'name': 'Blue', 'selling_price': Decimal('12'), 'is_default': True},
            {'name': 'Green', 'selling_price': Decimal('12'), 'is_default': True},
        ]})
        self.assertEqual([v['is_default'] for v in variants], [False, True, False])

    def test_codes_are_trimmed(self):
        """Test blank codes become None"""
        variants = normalize_variants({'has_variants': True, 'variants': [
            {'name': 'Red', 'selling_price': Decimal('10'), 'sku': '  ', 'barcode': ' 899 '},
        ]})
        self.assertIsNone(variants[0]['sku'])
        self.assertEqual(variants[0]['barcode'], '899')

    def test_duplicate_sku_in_payload(self):
        """Test duplicate SKUs (case-insensitive) point at the offending row"""
        with self.assertRaises(ActionError) as ctx:
            normalize_variants({'has_variants': True, 'variants': [
                {'name': 'Red', 'selling_price': Decimal('10'), 'sku': 'TS-01'},
                {'name': 'Blue', 'selling_price': Decimal('10'), 'sku': 'ts-01'},
            ]})
        self.assertEqual(ctx.exception.code, 'INVALID_INPUT')
        self.assertEqual(ctx.exception.field_errors, {'variants.1.sku': ['Duplicate SKU in variant list.']})


class ImageKitHelperTests(TestCase):
    """Test ImageKit helpers"""

    def setUp(self):
        self.company = TestDataFactory.create_company(name='Acme Store')
        self.folder = imagekit.get_company_folder(self.company.id)

    def test_company_folder(self):
        """Test the company folder is slug plus short id"""
        self.assertEqual(self.folder, f"acme-store-{str(self.company.id)[:8]}")
        self.assertEqual(imagekit.get_products_folder(self.folder), f"/products/{self.folder}")

    def test_inside_company_folder(self):
        """Test folder checks need the full folder prefix"""
        self.assertTrue(imagekit.is_inside_company_folder({'filePath': f'/products/{self.folder}/a.jpg'}, self.folder))
        self.assertFalse(imagekit.is_inside_company_folder({'filePath': f'/products/{self.folder}x/a.jpg'}, self.folder))
        self.assertFalse(imagekit.is_inside_company_folder(None, self.folder))

    def test_auth_header(self):
        """Test the private key is sent as basic auth username"""
        self.assertEqual(imagekit.build_auth_header('key'), 'Basic a2V5Og==')

    @override_settings(**IMAGEKIT_SETTINGS)
    def test_upload_auth_signature(self):
        """Test the upload signature is hmac-sha1 of token + expire"""
        auth = imagekit.build_upload_auth('/products/x')
        expected = hmac.new(b'private_test_key', f"{auth['token']}{auth['expire']}".encode(), hashlib.sha1).hexdigest()
        self.assertEqual(auth['signature'], expected)
        self.assertEqual(auth['public_key'], 'public_test_key')
        self.assertEqual(auth['folder'], '/products/x')

    @override_settings(**IMAGEKIT_SETTINGS)
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_file_details_missing(self, mock_get):
        """Test a 404 means the file does not exist"""
        mock_get.return_value = _response(404)
        self.assertIsNone(imagekit.get_file_details('file_1'))
        self.assertEqual(mock_get.call_args[0][0], 'https://api.imagekit.io/v1/files/file_1/details')

    @override_settings(**IMAGEKIT_SETTINGS)
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_file_details_error_status(self, mock_get):
        """Test other failures raise ImageKitError"""
        mock_get.return_value = _response(500)
        with self.assertRaises(imagekit.ImageKitError):
            imagekit.get_file_details('file_1')

    @override_settings(**IMAGEKIT_SETTINGS)
    @mock.patch('stockly.catalog.imagekit.requests.delete')
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_delete_quietly_skips_foreign_files(self, mock_get, mock_delete):
        """Test files outside the company folder are never deleted"""
        mock_get.return_value = _response(200, {'filePath': '/products/other-company/a.jpg'})
        self.assertFalse(imagekit.delete_file_quietly('file_1', self.folder, 'TEST_TAG'))
        mock_delete.assert_not_called()

    @override_settings(**IMAGEKIT_SETTINGS)
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_delete_quietly_swallows_network_errors(self, mock_get):
        """Test cleanup failures are logged, not raised"""
        mock_get.side_effect = requests.ConnectionError('Connection refused')
        self.assertFalse(imagekit.delete_file_quietly('file_1', self.folder, 'TEST_TAG'))


class ProductAPITests(TestCase):
    """Test product API endpoints"""

    def setUp(self):
        self.company = TestDataFactory.create_company(name='Acme Store')
        self.other_company = TestDataFactory.create_company()
        self.admin = TestDataFactory.create_member(self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def _variant_payload(self):
        return {
            'name': 'T-Shirt',
            'category': 'FASHION',
            'unit': 'PCS',
            'has_variants': True,
            'variants': [
                {'name': 'S', 'sku': 'TS-S', 'selling_price': '50000.00'},
                {'name': 'M', 'sku': 'TS-M', 'barcode': '8990001', 'selling_price': '55000.00', 'is_default': True},
            ],
        }

    def test_create_simple_product(self):
        """Test creating a product without variants"""
        response = self.client.post('/api/v1/products/', {'name': '  Lip Balm  ', 'category': 'COSMETIC'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertEqual(data['name'], 'Lip Balm')
        self.assertFalse(data['has_variants'])
        self.assertEqual(len(data['variants']), 1)
        self.assertEqual(data['variants'][0]['name'], 'Default')
        log = ActivityLog.objects.get(action='products.create')
        self.assertEqual(log.target_id, data['id'])
        self.assertEqual(log.meta['variant_count'], 1)

    def test_create_product_with_variants(self):
        """Test creating a product with variants puts the default first"""
        response = self.client.post('/api/v1/products/', self._variant_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertTrue(data['has_variants'])
        self.assertEqual([v['name'] for v in data['variants']], ['M', 'S'])
        self.assertTrue(data['variants'][0]['is_default'])

    def test_create_product_blank_name(self):
        """Test a blank name is INVALID_INPUT on the name field"""
        response = self.client.post('/api/v1/products/', {'name': ''}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['field_errors']['name'], ['Product name is required.'])

    def test_create_product_variant_name_required(self):
        """Test each variant needs a name when has_variants is set"""
        payload = self._variant_payload()
        payload['variants'][1]['name'] = ' '
        response = self.client.post('/api/v1/products/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('variants.1.name', response.data['error']['field_errors'])

    def test_create_product_negative_price(self):
        """Test negative selling prices are refused"""
        payload = self._variant_payload()
        payload['variants'][0]['selling_price'] = '-1'
        response = self.client.post('/api/v1/products/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            response.data['error']['field_errors']['variants.0.selling_price'],
            ['Selling price cannot be negative.'],
        )

    def test_create_product_sku_in_use(self):
        """Test a SKU already used by another live variant is CONFLICT"""
        TestDataFactory.create_product(self.company, sku='TS-S')
        response = self.client.post('/api/v1/products/', self._variant_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['message'], 'SKU already in use.')

    def test_sku_unique_per_company_only(self):
        """Test another company may use the same SKU"""
        TestDataFactory.create_product(self.other_company, sku='TS-S')
        response = self.client.post('/api/v1/products/', self._variant_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_staff_cannot_create(self):
        """Test STAFF users are read-only"""
        staff = TestDataFactory.create_member(self.company, system_role=User.SYSTEM_ROLE_STAFF, role=Membership.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self.client.post('/api/v1/products/', {'name': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error']['message'], 'Access denied. You are not allowed to manage products.')

    def test_staff_can_list(self):
        """Test STAFF users can read products"""
        TestDataFactory.create_product(self.company)
        staff = TestDataFactory.create_member(self.company, system_role=User.SYSTEM_ROLE_STAFF, role=Membership.ROLE_STAFF)
        self.client.authenticate_user(staff)
        response = self.client.get('/api/v1/products/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['meta']['rowCount'], 1)

    def test_list_products_scoped_and_searchable(self):
        """Test the product table is company scoped and searchable"""
        TestDataFactory.create_product(self.company, name='Blue Jeans')
        TestDataFactory.create_product(self.company, name='Red Dress')
        TestDataFactory.create_product(self.other_company, name='Blue Hat')

        response = self.client.get('/api/v1/products/', {'q': 'blue'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        rows = response.data['data']['data']
        self.assertEqual([row['name'] for row in rows], ['Blue Jeans'])
        self.assertEqual(rows[0]['variant_count'], 1)

    def test_list_products_filter_and_paging(self):
        """Test status filter and page params"""
        for index in range(12):
            TestDataFactory.create_product(self.company, name=f'Product {index}')
        TestDataFactory.create_product(self.company, name='Old', status=Product.STATUS_INACTIVE)

        response = self.client.get('/api/v1/products/', {'status': 'ACTIVE', 'page': 2, 'pageSize': 10})
        meta = response.data['data']['meta']
        self.assertEqual(meta['rowCount'], 12)
        self.assertEqual(meta['pageIndex'], 1)
        self.assertEqual(len(response.data['data']['data']), 2)
        self.assertFalse(meta['hasNextPage'])

    def test_list_products_invalid_filter_choice(self):
        """Test unknown category values are INVALID_INPUT"""
        response = self.client.get('/api/v1/products/', {'category': 'BOGUS'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'INVALID_INPUT')
        self.assertIn('category', response.data['error']['field_errors'])

    def test_get_product_other_company(self):
        """Test products of other companies are NOT_FOUND"""
        product = TestDataFactory.create_product(self.other_company)
        response = self.client.get(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['message'], 'Product not found.')

    def test_update_product_variants(self):
        """Test update keeps, adds and removes variants"""
        created = self.client.post('/api/v1/products/', self._variant_payload(), format='json').data['data']
        variant_m, variant_s = created['variants']
        payload = {
            'name': 'T-Shirt v2',
            'category': 'FASHION',
            'has_variants': True,
            'variants': [
                {'id': variant_m['id'], 'name': 'M', 'sku': 'TS-M', 'selling_price': '60000.00', 'is_default': True},
                {'name': 'L', 'sku': 'TS-L', 'selling_price': '65000.00'},
            ],
        }
        response = self.client.put(f"/api/v1/products/{created['id']}/", payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['name'], 'T-Shirt v2')
        self.assertEqual([v['name'] for v in data['variants']], ['M', 'L'])
        self.assertEqual(data['variants'][0]['id'], variant_m['id'])
        self.assertEqual(data['variants'][0]['selling_price'], '60000.00')
        self.assertFalse(ProductVariant.objects.filter(pk=variant_s['id']).exists())
        self.assertTrue(ActivityLog.objects.filter(action='products.update', target_id=created['id']).exists())

    def test_update_keeps_own_sku(self):
        """Test a variant may keep its own SKU"""
        product = TestDataFactory.create_product(self.company, sku='OWN-1')
        variant = TestDataFactory.default_variant(product)
        payload = {
            'name': product.name,
            'has_variants': True,
            'variants': [{'id': str(variant.id), 'name': 'Default', 'sku': 'OWN-1', 'selling_price': '1.00'}],
        }
        response = self.client.put(f'/api/v1/products/{product.id}/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_update_foreign_variant_id(self):
        """Test variant ids from another product are refused"""
        product = TestDataFactory.create_product(self.company)
        other = TestDataFactory.create_product(self.company)
        payload = {
            'name': product.name,
            'has_variants': True,
            'variants': [{'id': str(TestDataFactory.default_variant(other).id), 'name': 'X', 'selling_price': '1.00'}],
        }
        response = self.client.put(f'/api/v1/products/{product.id}/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['message'], 'Some variants do not belong to this product.')

    def test_update_removing_stocked_variant_is_conflict(self):
        """Test variants with ledger rows cannot be removed"""
        product = TestDataFactory.create_product(self.company)
        stocked = TestDataFactory.create_variant(product, name='Stocked')
        TestDataFactory.create_movement(stocked, self.admin, '3')
        default = TestDataFactory.default_variant(product)
        payload = {
            'name': product.name,
            'has_variants': True,
            'variants': [{'id': str(default.id), 'name': 'Default', 'selling_price': '1.00'}],
        }
        response = self.client.put(f'/api/v1/products/{product.id}/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertTrue(ProductVariant.objects.filter(pk=stocked.pk).exists())

    def test_delete_product(self):
        """Test deleting a product removes it and its variants"""
        product = TestDataFactory.create_product(self.company)
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data'], {'product_id': str(product.id)})
        self.assertFalse(Product.objects.filter(pk=product.pk).exists())
        self.assertFalse(ProductVariant.objects.filter(product_id=product.pk).exists())
        self.assertTrue(ActivityLog.objects.filter(action='products.delete').exists())

    def test_delete_stocked_product_is_conflict(self):
        """Test products used in stock transactions cannot be deleted"""
        product = TestDataFactory.create_product(self.company)
        TestDataFactory.create_movement(TestDataFactory.default_variant(product), self.admin, '2')
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['message'], 'Product is already used in stock transactions.')
        self.assertTrue(Product.objects.filter(pk=product.pk).exists())

    def test_variant_options(self):
        """Test options list only active products with readable labels"""
        product = TestDataFactory.create_product(self.company, name='Serum')
        TestDataFactory.create_variant(product, name='50ml')
        TestDataFactory.create_product(self.company, name='Retired', status=Product.STATUS_INACTIVE)

        response = self.client.get('/api/v1/products/variant-options/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        labels = [row['label'] for row in response.data['data']]
        self.assertEqual(labels, ['Serum', 'Serum - 50ml'])


@override_settings(**IMAGEKIT_SETTINGS)
class ProductImageAPITests(TestCase):
    """Test image ownership and the ImageKit endpoints"""

    def setUp(self):
        self.company = TestDataFactory.create_company(name='Acme Store')
        self.admin = TestDataFactory.create_member(self.company)
        self.folder = imagekit.get_company_folder(self.company.id)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def _image(self, file_id='file_1'):
        return {'file_id': file_id, 'url': f'https://ik.imagekit.io/stockly/products/{self.folder}/a.jpg'}

    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_create_with_owned_image(self, mock_get):
        """Test an image inside the company folder is accepted"""
        mock_get.return_value = _response(200, {'filePath': f'/products/{self.folder}/a.jpg'})
        response = self.client.post('/api/v1/products/', {'name': 'Serum', 'image': self._image()}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['image']['file_id'], 'file_1')

    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_create_with_foreign_image(self, mock_get):
        """Test an image from another folder is FORBIDDEN"""
        mock_get.return_value = _response(200, {'filePath': '/products/someone-else/a.jpg'})
        response = self.client.post('/api/v1/products/', {'name': 'Serum', 'image': self._image()}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Product.objects.exists())

    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_create_with_missing_image(self, mock_get):
        """Test an image unknown to ImageKit is NOT_FOUND"""
        mock_get.return_value = _response(404)
        response = self.client.post('/api/v1/products/', {'name': 'Serum', 'image': self._image()}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_create_when_imagekit_unreachable(self, mock_get):
        """Test ImageKit outages are INTERNAL"""
        mock_get.side_effect = requests.ConnectionError('Connection refused')
        response = self.client.post('/api/v1/products/', {'name': 'Serum', 'image': self._image()}, format='json')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error']['message'], 'Could not verify the product image.')

    @override_settings(IMAGEKIT_PRIVATE_KEY='')
    def test_create_with_image_when_not_configured(self):
        """Test images are refused when ImageKit is not configured"""
        response = self.client.post('/api/v1/products/', {'name': 'Serum', 'image': self._image()}, format='json')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error']['message'], 'Image upload is not configured on the server.')

    @mock.patch('stockly.catalog.imagekit.requests.delete')
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_replacing_image_deletes_old_file_after_commit(self, mock_get, mock_delete):
        """Test the previous image is removed once the update commits"""
        mock_get.return_value = _response(200, {'filePath': f'/products/{self.folder}/a.jpg'})
        mock_delete.return_value = _response(204)
        product = Product.objects.create(company=self.company, name='Serum', image=self._image('old_file'))
        TestDataFactory.create_variant(product, name='Default', is_default=True)

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.put(
                f'/api/v1/products/{product.id}/', {'name': 'Serum', 'image': self._image('new_file')}, format='json',
            )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        mock_delete.assert_called_once()
        self.assertIn('old_file', mock_delete.call_args[0][0])
        log = ActivityLog.objects.get(action='products.update')
        self.assertTrue(log.meta['image_changed'])

    def test_upload_auth(self):
        """Test the upload signature targets the company products folder"""
        response = self.client.post('/api/v1/imagekit/auth/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['folder'], f'/products/{self.folder}')
        self.assertEqual(data['public_key'], 'public_test_key')
        self.assertIn('signature', data)

    @mock.patch('stockly.catalog.imagekit.requests.delete')
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_delete_uploaded_file(self, mock_get, mock_delete):
        """Test deleting an uploaded file of the company"""
        mock_get.return_value = _response(200, {'filePath': f'/products/{self.folder}/a.jpg'})
        mock_delete.return_value = _response(204)
        response = self.client.post('/api/v1/imagekit/files/delete/', {'file_id': 'file_1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data'], {'file_id': 'file_1'})

    @mock.patch('stockly.catalog.imagekit.requests.delete')
    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_delete_foreign_file_forbidden(self, mock_get, mock_delete):
        """Test files of other companies cannot be deleted"""
        mock_get.return_value = _response(200, {'filePath': '/products/someone-else/a.jpg'})
        response = self.client.post('/api/v1/imagekit/files/delete/', {'file_id': 'file_1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        mock_delete.assert_not_called()

    @mock.patch('stockly.catalog.imagekit.requests.get')
    def test_delete_missing_file(self, mock_get):
        """Test deleting an unknown file is NOT_FOUND"""
        mock_get.return_value = _response(404)
        response = self.client.post('/api/v1/imagekit/files/delete/', {'file_id': 'file_1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['message'], 'Image file not found.')
