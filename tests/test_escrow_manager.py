import pytest

from escrow_service.errors import NotFoundError, ValidationError
from escrow_service.models import DEFAULT_FEE_SETTINGS, SYSTEM_AUTHOR_ID
from escrow_service.utils.addresses import is_wallet_address

from conftest import escrow_payload


@pytest.fixture
def manager(services):
    return services.escrow


def test_create_assigns_three_distinct_addresses(manager):
    transaction = manager.create(escrow_payload())

    addresses = {transaction.buyer_address, transaction.seller_address, transaction.escrow_address}
    assert len(addresses) == 3
    assert all(is_wallet_address(address) for address in addresses)
    assert all(len(address) == 34 and address.startswith('1') for address in addresses)


def test_create_starts_pending_with_system_message(manager):
    transaction = manager.create(escrow_payload())

    assert transaction.status == 'pending'
    assert transaction.funded_at is None
    assert transaction.completed_at is None
    assert transaction.amount == 100000
    assert transaction.fee == 3000
    assert transaction.elite_fee == 0
    assert len(transaction.messages) == 1

    message = transaction.messages[0]
    assert message.is_system
    assert message.user_id == SYSTEM_AUTHOR_ID
    assert message.content == (
        "Escrow transaction created for Vintage Camera. Buyer must fund escrow address to proceed."
    )


def test_create_generates_product_id_when_absent(manager):
    payload = escrow_payload()
    del payload['productId']

    transaction = manager.create(payload)

    assert transaction.product_id.startswith('product-')


@pytest.mark.parametrize('field', ['buyerId', 'sellerId', 'productName', 'amount'])
def test_create_requires_field(manager, field):
    payload = escrow_payload()
    del payload[field]

    with pytest.raises(ValidationError):
        manager.create(payload)


@pytest.mark.parametrize('amount', [0, -5, 1.5, '100', True])
def test_create_rejects_invalid_amount(manager, amount):
    with pytest.raises(ValidationError):
        manager.create(escrow_payload(amount=amount))


def test_create_rejects_same_buyer_and_seller(manager):
    with pytest.raises(ValidationError):
        manager.create(escrow_payload(sellerId='B'))


def test_happy_path_stamps_funded_and_completed(manager):
    transaction = manager.create(escrow_payload())

    funded = manager.update_status(transaction.id, 'funded')
    assert funded.status == 'funded'
    assert funded.funded_at is not None
    assert funded.completed_at is None

    completed = manager.update_status(transaction.id, 'completed')
    assert completed.status == 'completed'
    assert completed.completed_at is not None
    assert completed.funded_at == funded.funded_at
    assert completed.updated_at >= funded.updated_at

    contents = [message.content for message in completed.messages]
    assert contents[1:] == [
        "Escrow status changed from pending to funded.",
        "Escrow status changed from funded to completed.",
    ]


def test_dispute_can_end_cancelled(manager):
    transaction = manager.create(escrow_payload())
    manager.update_status(transaction.id, 'funded')
    manager.update_status(transaction.id, 'disputed')

    cancelled = manager.update_status(transaction.id, 'cancelled')

    assert cancelled.status == 'cancelled'
    assert cancelled.completed_at is None


@pytest.mark.parametrize('path', [
    ['completed'],
    ['disputed'],
    ['funded', 'cancelled'],
    ['funded', 'completed', 'funded'],
    ['cancelled', 'funded'],
])
def test_disallowed_transition_is_rejected(manager, path):
    transaction = manager.create(escrow_payload())
    *allowed, rejected = path
    for status in allowed:
        manager.update_status(transaction.id, status)

    with pytest.raises(ValidationError):
        manager.update_status(transaction.id, rejected)

    assert manager.get_transaction(transaction.id).status == (allowed[-1] if allowed else 'pending')


def test_unknown_status_is_rejected(manager):
    transaction = manager.create(escrow_payload())

    with pytest.raises(ValidationError):
        manager.update_status(transaction.id, 'shipped')


def test_update_status_unknown_transaction(manager):
    with pytest.raises(NotFoundError):
        manager.update_status('escrow-missing', 'funded')


def test_messages_are_kept_in_order(manager):
    transaction = manager.create(escrow_payload())

    manager.add_message(transaction.id, 'B', 'buyer', 'Sent the funds')
    manager.add_message(transaction.id, 'S', 'seller', ' Shipping today ')

    messages = manager.get_transaction(transaction.id).messages
    assert [m.content for m in messages[1:]] == ['Sent the funds', 'Shipping today']
    assert not messages[1].is_system


def test_add_message_to_unknown_transaction(manager):
    with pytest.raises(NotFoundError):
        manager.add_message('escrow-missing', 'B', 'buyer', 'hello')


@pytest.mark.parametrize('user_id, content', [
    ('B', ''),
    ('B', '   '),
    (None, 'hello'),
    ('system', 'hello'),
])
def test_add_message_validation(manager, user_id, content):
    transaction = manager.create(escrow_payload())

    with pytest.raises(ValidationError):
        manager.add_message(transaction.id, user_id, 'someone', content)


def test_get_transactions_filters_by_participant(manager):
    first = manager.create(escrow_payload())
    second = manager.create(escrow_payload(buyerId='C', sellerId='B'))
    manager.create(escrow_payload(buyerId='C', sellerId='D'))

    for_b = manager.get_transactions('B')
    assert [tx.id for tx in for_b] == [second.id, first.id]
    assert all(tx.messages for tx in for_b)

    assert manager.get_transactions('nobody') == []
    assert len(manager.get_transactions()) == 3


def test_fee_settings_default_until_saved(manager):
    assert manager.get_fee_settings() == DEFAULT_FEE_SETTINGS

    manager.update_fee_settings({'empireElite': 0, 'verifiedVendor': 2.5, 'regularVendor': 6}, 'admin')
    latest = manager.update_fee_settings({'empireElite': 1, 'verifiedVendor': 2, 'regularVendor': 5}, 'admin')

    settings = manager.get_fee_settings()
    assert settings['id'] == latest.id
    assert settings['verifiedVendor'] == 2.0
    assert settings['updatedBy'] == 'admin'


@pytest.mark.parametrize('fees', [
    None,
    {'empireElite': 0, 'verifiedVendor': 3},
    {'empireElite': -1, 'verifiedVendor': 3, 'regularVendor': 7},
    {'empireElite': 0, 'verifiedVendor': 101, 'regularVendor': 7},
    {'empireElite': 0, 'verifiedVendor': '3', 'regularVendor': 7},
])
def test_fee_settings_validation(manager, fees):
    with pytest.raises(ValidationError):
        manager.update_fee_settings(fees, 'admin')


@pytest.mark.parametrize('username', [123, ['buyer'], {'name': 'buyer'}])
def test_add_message_rejects_non_text_username(manager, username):
    transaction = manager.create(escrow_payload())

    with pytest.raises(ValidationError):
        manager.add_message(transaction.id, 'B', username, 'hello')

    assert len(manager.get_transaction(transaction.id).messages) == 1


def test_add_message_without_username(manager):
    transaction = manager.create(escrow_payload())

    message = manager.add_message(transaction.id, 'B', None, 'hello')

    assert message.username == ''
