"""
Comprehensive test suite for the Inventory module
Tests: stock ledger helpers, receivings, adjustments, stock opname,
the stock table and the no-negative-stock / opname-lock rules
"""
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework import status
from stockly.catalog.models import Product
from stockly.core.models import ActivityLog, Membership, User
from stockly.core.test_utils import AuthenticatedAPIClient, TestDataFactory
from stockly.inventory.models import Receiving, StockMovement, StockOpname
from stockly.inventory.services import merge_adjustment_items, merge_receiving_items
from stockly.inventory.stock import (
    find_negative_stock_variant,
    get_stock_balances,
    merge_variant_diffs,
    to_signed_stock_delta,
)


class StockHelperTests(TestCase):
    """Test ledger arithmetic"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_member(self.company)
        self.product = TestDataFactory.create_product(self.company)
        self.variant = TestDataFactory.default_variant(self.product)

    def test_signed_delta(self):
        """Test IN adds, OUT subtracts and ADJUST keeps its sign"""
        self.assertEqual(to_signed_stock_delta('IN', '5'), Decimal('5'))
        self.assertEqual(to_signed_stock_delta('OUT', '5'), Decimal('-5'))
        self.assertEqual(to_signed_stock_delta('ADJUST', '-2'), Decimal('-2'))

    def test_merge_variant_diffs(self):
        """Test diffs are summed per variant in first-seen order"""
        merged = merge_variant_diffs([
            {'product_variant_id': 'b', 'qty_diff': Decimal('2')},
            {'product_variant_id': 'a', 'qty_diff': Decimal('1')},
            {'product_variant_id': 'b', 'qty_diff': Decimal('-5')},
        ])
        self.assertEqual(list(merged.items()), [('b', Decimal('-3')), ('a', Decimal('1'))])

    def test_find_negative_stock_variant(self):
        """Test the first variant going below zero is reported"""
        current = {'a': Decimal('5'), 'b': Decimal('1')}
        self.assertIsNone(find_negative_stock_variant(current, {'a': Decimal('-5')}))
        self.assertEqual(find_negative_stock_variant(current, {'a': Decimal('-1'), 'b': Decimal('-2')}), 'b')
        self.assertEqual(find_negative_stock_variant(current, {'c': Decimal('-1')}), 'c')

    def test_balances_sum_signed_movements(self):
        """Test balances sum IN, OUT and ADJUST movements"""
        other = TestDataFactory.create_variant(self.product, name='Other')
        TestDataFactory.create_movement(self.variant, self.user, '10')
        TestDataFactory.create_movement(self.variant, self.user, '3', movement_type=StockMovement.TYPE_OUT,
                                        reference_type=StockMovement.REFERENCE_SALE)
        TestDataFactory.create_movement(self.variant, self.user, '-2', movement_type=StockMovement.TYPE_ADJUST,
                                        reference_type=StockMovement.REFERENCE_ADJUSTMENT)
        balances = get_stock_balances(self.company.id, [self.variant.id, other.id])
        self.assertEqual(balances[str(self.variant.id)], Decimal('5'))
        self.assertEqual(balances[str(other.id)], Decimal('0'))

    def test_merge_receiving_items(self):
        """Test duplicate receiving lines are summed and keep the first note"""
        merged = merge_receiving_items([
            {'product_variant_id': 'a', 'qty': Decimal('1'), 'note': ' '},
            {'product_variant_id': 'a', 'qty': Decimal('2'), 'note': 'second'},
            {'product_variant_id': 'a', 'qty': Decimal('3'), 'note': 'third'},
        ])
        self.assertEqual(merged, [{'product_variant_id': 'a', 'qty': Decimal('6'), 'note': 'second'}])

    def test_merge_adjustment_items_drops_zero(self):
        """Test adjustment lines cancelling out are dropped"""
        merged = merge_adjustment_items([
            {'product_variant_id': 'a', 'qty_diff': Decimal('2')},
            {'product_variant_id': 'b', 'qty_diff': Decimal('1')},
            {'product_variant_id': 'a', 'qty_diff': Decimal('-2')},
        ])
        self.assertEqual([item['product_variant_id'] for item in merged], ['b'])

    def test_one_active_opname_per_company(self):
        """Test the database refuses a second IN_PROGRESS opname"""
        TestDataFactory.create_opname(self.company, self.user)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                StockOpname.objects.create(company=self.company, started_by=self.user)


class InventoryAPITestCase(TestCase):
    """Shared setup for inventory API tests"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.admin = TestDataFactory.create_member(self.company)
        self.product = TestDataFactory.create_product(self.company, name='Serum', sku='SR-01')
        self.variant = TestDataFactory.default_variant(self.product)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def balance(self, variant=None):
        variant = variant or self.variant
        return get_stock_balances(self.company.id, [variant.id])[str(variant.id)]

    def create_staff(self):
        return TestDataFactory.create_member(self.company, system_role=User.SYSTEM_ROLE_STAFF, role=Membership.ROLE_STAFF)


class ReceivingAPITests(InventoryAPITestCase):
    """Test receiving endpoints"""

    def test_create_draft_receiving(self):
        """Test a DRAFT receiving writes no movements"""
        data = {'items': [{'product_variant_id': str(self.variant.id), 'qty': '5'}]}
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['status'], 'DRAFT')
        self.assertEqual(response.data['data']['items'][0]['product_name'], 'Serum')
        self.assertEqual(self.balance(), Decimal('0'))
        log = ActivityLog.objects.get(action='inventory.receiving.created')
        self.assertEqual(log.meta, {'status': 'DRAFT', 'item_count': 1, 'total_qty': 5.0})

    def test_create_posted_receiving_merges_items(self):
        """Test a POSTED receiving merges duplicates and writes IN movements"""
        data = {
            'status': 'POSTED',
            'items': [
                {'product_variant_id': str(self.variant.id), 'qty': '2.50'},
                {'product_variant_id': str(self.variant.id), 'qty': '1.50', 'note': 'box 2'},
            ],
        }
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        items = response.data['data']['items']
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]['qty'], '4.00')
        self.assertEqual(items[0]['note'], 'box 2')
        self.assertEqual(self.balance(), Decimal('4'))
        self.assertIsNotNone(response.data['data']['posted_at'])
        self.assertTrue(ActivityLog.objects.filter(action='inventory.receiving.posted').exists())

    def test_create_receiving_invalid_qty(self):
        """Test quantities must be positive"""
        data = {'items': [{'product_variant_id': str(self.variant.id), 'qty': '0'}]}
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            response.data['error']['field_errors']['items.0.qty'],
            ['Received quantity must be greater than 0.'],
        )

    def test_create_receiving_without_items(self):
        """Test at least one item is required"""
        response = self.client.post('/api/v1/inventory/receivings/', {'items': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(any(key.startswith('items') for key in response.data['error']['field_errors']))

    def test_create_receiving_foreign_variant(self):
        """Test variants of another company are refused"""
        foreign = TestDataFactory.default_variant(TestDataFactory.create_product(self.other_company))
        data = {'items': [{'product_variant_id': str(foreign.id), 'qty': '1'}]}
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Receiving.objects.exists())

    def test_post_draft_receiving(self):
        """Test posting a draft writes the IN movements"""
        receiving = TestDataFactory.create_receiving(self.company, self.admin, [(self.variant, '7')])
        response = self.client.post(f'/api/v1/inventory/receivings/{receiving.id}/post/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'POSTED')
        self.assertEqual(self.balance(), Decimal('7'))
        movement = StockMovement.objects.get(reference_id=receiving.id)
        self.assertEqual(movement.type, StockMovement.TYPE_IN)
        self.assertEqual(movement.reference_type, StockMovement.REFERENCE_RECEIVING)

    def test_post_twice_is_conflict(self):
        """Test an already posted receiving cannot be posted again"""
        receiving = TestDataFactory.create_receiving(self.company, self.admin, [(self.variant, '7')])
        self.client.post(f'/api/v1/inventory/receivings/{receiving.id}/post/')
        response = self.client.post(f'/api/v1/inventory/receivings/{receiving.id}/post/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['message'], 'Receiving already posted.')
        self.assertEqual(self.balance(), Decimal('7'))

    def test_void_draft_receiving(self):
        """Test voiding a draft, then posting it is refused"""
        receiving = TestDataFactory.create_receiving(self.company, self.admin, [(self.variant, '7')])
        response = self.client.post(f'/api/v1/inventory/receivings/{receiving.id}/void/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'VOID')
        self.assertTrue(ActivityLog.objects.filter(action='inventory.receiving.voided').exists())

        response = self.client.post(f'/api/v1/inventory/receivings/{receiving.id}/post/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['message'], 'Receiving already void.')

    def test_void_posted_receiving_is_conflict(self):
        """Test posted receivings are final"""
        receiving = TestDataFactory.create_receiving(
            self.company, self.admin, [(self.variant, '7')], status=Receiving.STATUS_POSTED,
        )
        response = self.client.post(f'/api/v1/inventory/receivings/{receiving.id}/void/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_receiving_of_other_company_not_found(self):
        """Test receivings are company scoped"""
        other_admin = TestDataFactory.create_member(self.other_company)
        receiving = TestDataFactory.create_receiving(self.other_company, other_admin, [])
        response = self.client.get(f'/api/v1/inventory/receivings/{receiving.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['message'], 'Receiving not found.')

    def test_list_recent_receivings(self):
        """Test recent receivings carry item counts and totals"""
        other = TestDataFactory.create_variant(self.product, name='Big')
        TestDataFactory.create_receiving(self.company, self.admin, [(self.variant, '2'), (other, '3')])
        TestDataFactory.create_receiving(self.company, self.admin, [(self.variant, '1')])
        response = self.client.get('/api/v1/inventory/receivings/', {'limit': 1})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        rows = response.data['data']
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['item_count'], 1)
        self.assertEqual(rows[0]['total_qty'], '1.00')

        rows = self.client.get('/api/v1/inventory/receivings/', {'limit': 500}).data['data']
        self.assertEqual(len(rows), 2)

    def test_staff_can_read_but_not_write(self):
        """Test STAFF users can list but not create receivings"""
        self.client.authenticate_user(self.create_staff())
        self.assertEqual(self.client.get('/api/v1/inventory/receivings/').status_code, status.HTTP_200_OK)
        data = {'items': [{'product_variant_id': str(self.variant.id), 'qty': '1'}]}
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error']['message'], 'Access denied. You are not allowed to manage stock.')


class AdjustmentAPITests(InventoryAPITestCase):
    """Test stock adjustment endpoints"""

    def setUp(self):
        super().setUp()
        TestDataFactory.create_movement(self.variant, self.admin, '10')

    def test_adjust_down(self):
        """Test a negative adjustment reduces stock"""
        data = {
            'reason': ' Damaged ',
            'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '-3'}],
        }
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['reason'], 'Damaged')
        self.assertEqual(self.balance(), Decimal('7'))
        movement = StockMovement.objects.get(reference_type=StockMovement.REFERENCE_ADJUSTMENT)
        self.assertEqual(movement.note, 'Damaged')
        self.assertEqual(movement.qty, Decimal('-3'))
        log = ActivityLog.objects.get(action='inventory.adjustment.posted')
        self.assertEqual(log.meta['total_qty_diff'], -3.0)

    def test_adjust_below_zero_is_conflict(self):
        """Test adjustments may not make stock negative"""
        data = {
            'reason': 'Lost',
            'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '-11'}],
        }
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIn('Serum', response.data['error']['message'])
        self.assertEqual(self.balance(), Decimal('10'))

    def test_adjust_zero_diff_rejected(self):
        """Test a zero qty_diff is INVALID_INPUT"""
        data = {'reason': 'Count', 'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '0'}]}
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items.0.qty_diff', response.data['error']['field_errors'])

    def test_adjust_lines_cancelling_out(self):
        """Test lines summing to zero leave nothing to post"""
        data = {
            'reason': 'Count',
            'items': [
                {'product_variant_id': str(self.variant.id), 'qty_diff': '2'},
                {'product_variant_id': str(self.variant.id), 'qty_diff': '-2'},
            ],
        }
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_adjust_blank_reason(self):
        """Test the reason is required"""
        data = {'reason': '   ', 'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '1'}]}
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('reason', response.data['error']['field_errors'])

    def test_list_recent_adjustments(self):
        """Test recent adjustments carry totals"""
        data = {
            'reason': 'Found',
            'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '4', 'note': 'shelf'}],
        }
        self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        response = self.client.get('/api/v1/inventory/adjustments/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data'][0]['total_qty_diff'], '4.00')
        self.assertEqual(StockMovement.objects.get(reference_type='ADJUSTMENT').note, 'shelf')


class OpnameAPITests(InventoryAPITestCase):
    """Test stock opname endpoints and the posting lock"""

    def setUp(self):
        super().setUp()
        TestDataFactory.create_movement(self.variant, self.admin, '10')
        self.inactive = TestDataFactory.create_product(self.company, name='Retired', status=Product.STATUS_INACTIVE)

    def _start(self):
        response = self.client.post('/api/v1/inventory/opnames/', {'note': 'Monthly count'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data['data']

    def test_start_snapshots_active_variants(self):
        """Test the snapshot covers live variants of active products"""
        opname = self._start()
        self.assertEqual(opname['status'], 'IN_PROGRESS')
        self.assertEqual(len(opname['items']), 1)
        item = opname['items'][0]
        self.assertEqual(item['product_variant_id'], str(self.variant.id))
        self.assertEqual(item['system_qty'], '10.00')
        self.assertEqual(item['counted_qty'], '10.00')
        self.assertEqual(item['diff_qty'], '0.00')
        log = ActivityLog.objects.get(action='inventory.opname.started')
        self.assertEqual(log.meta, {'item_count': 1})

    def test_second_opname_is_conflict(self):
        """Test only one opname can be in progress"""
        self._start()
        response = self.client.post('/api/v1/inventory/opnames/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_active_opname_blocks_postings(self):
        """Test receivings and adjustments are blocked during a count"""
        self._start()
        data = {'status': 'POSTED', 'items': [{'product_variant_id': str(self.variant.id), 'qty': '1'}]}
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(
            response.data['error']['message'],
            'A stock opname is in progress. Stock postings are blocked until it is finished.',
        )

        data = {'reason': 'x', 'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '1'}]}
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        # Drafts are still allowed
        data = {'items': [{'product_variant_id': str(self.variant.id), 'qty': '1'}]}
        response = self.client.post('/api/v1/inventory/receivings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_count_and_finalize(self):
        """Test counted quantities become ADJUST movements on finalize"""
        opname = self._start()
        item_id = opname['items'][0]['id']
        url = f"/api/v1/inventory/opnames/{opname['id']}/items/{item_id}/"
        response = self.client.patch(url, {'counted_qty': '8'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['diff_qty'], '-2.00')
        self.assertTrue(ActivityLog.objects.filter(action='inventory.opname.item_counted_qty_updated').exists())

        response = self.client.post(f"/api/v1/inventory/opnames/{opname['id']}/finalize/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'FINALIZED')
        self.assertEqual(self.balance(), Decimal('8'))
        movement = StockMovement.objects.get(reference_type=StockMovement.REFERENCE_OPNAME)
        self.assertEqual(movement.note, 'Stock opname adjustment')
        log = ActivityLog.objects.get(action='inventory.opname.finalized')
        self.assertEqual(log.meta, {'diff_item_count': 1, 'total_qty_diff': -2.0})

    def test_finalize_without_diffs_writes_nothing(self):
        """Test a count matching the system writes no movements"""
        opname = self._start()
        response = self.client.post(f"/api/v1/inventory/opnames/{opname['id']}/finalize/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(StockMovement.objects.filter(reference_type=StockMovement.REFERENCE_OPNAME).exists())

    def test_negative_counted_qty_rejected(self):
        """Test counted quantities cannot be negative"""
        opname = self._start()
        url = f"/api/v1/inventory/opnames/{opname['id']}/items/{opname['items'][0]['id']}/"
        response = self.client.patch(url, {'counted_qty': '-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            response.data['error']['field_errors']['counted_qty'],
            ['Counted quantity cannot be negative.'],
        )

    def test_void_opname(self):
        """Test voiding releases the posting lock and blocks further counting"""
        opname = self._start()
        response = self.client.post(f"/api/v1/inventory/opnames/{opname['id']}/void/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'VOID')
        self.assertEqual(self.balance(), Decimal('10'))

        url = f"/api/v1/inventory/opnames/{opname['id']}/items/{opname['items'][0]['id']}/"
        response = self.client.patch(url, {'counted_qty': '1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['message'], 'Stock opname is no longer active.')

        response = self.client.post(f"/api/v1/inventory/opnames/{opname['id']}/finalize/")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        data = {'reason': 'x', 'items': [{'product_variant_id': str(self.variant.id), 'qty_diff': '1'}]}
        response = self.client.post('/api/v1/inventory/adjustments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_opname_item_not_found(self):
        """Test unknown opname items are NOT_FOUND"""
        opname = self._start()
        url = f"/api/v1/inventory/opnames/{opname['id']}/items/00000000-0000-0000-0000-000000000000/"
        response = self.client.patch(url, {'counted_qty': '1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['message'], 'Stock opname item not found.')

    def test_list_and_detail(self):
        """Test opname list and detail"""
        opname = self._start()
        rows = self.client.get('/api/v1/inventory/opnames/').data['data']
        self.assertEqual(rows[0]['id'], opname['id'])
        self.assertEqual(rows[0]['item_count'], 1)
        response = self.client.get(f"/api/v1/inventory/opnames/{opname['id']}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['note'], 'Monthly count')


class StockTableAPITests(InventoryAPITestCase):
    """Test the stock table endpoint"""

    def test_stock_table(self):
        """Test balances per variant, company scoped and searchable"""
        blue = TestDataFactory.create_product(self.company, name='Blue Jeans', barcode='899123')
        TestDataFactory.create_product(self.other_company, name='Blue Hat')
        TestDataFactory.create_movement(self.variant, self.admin, '10')
        TestDataFactory.create_movement(self.variant, self.admin, '4', movement_type=StockMovement.TYPE_OUT,
                                        reference_type=StockMovement.REFERENCE_SALE)

        response = self.client.get('/api/v1/inventory/stock/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        rows = {row['product_name']: row for row in response.data['data']['data']}
        self.assertEqual(set(rows), {'Serum', 'Blue Jeans'})
        self.assertEqual(rows['Serum']['current_qty'], '6.00')
        self.assertEqual(rows['Blue Jeans']['current_qty'], '0.00')
        self.assertEqual(rows['Blue Jeans']['product_id'], str(blue.id))

        response = self.client.get('/api/v1/inventory/stock/', {'q': '899123'})
        self.assertEqual([row['product_name'] for row in response.data['data']['data']], ['Blue Jeans'])

        response = self.client.get('/api/v1/inventory/stock/', {'q': 'SR-01'})
        self.assertEqual([row['product_name'] for row in response.data['data']['data']], ['Serum'])

    def test_stock_table_requires_company(self):
        """Test superadmins must impersonate first"""
        self.client.authenticate_user(TestDataFactory.create_superadmin())
        response = self.client.get('/api/v1/inventory/stock/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(
            response.data['error']['message'],
            'Choose a company to impersonate before managing stock.',
        )
