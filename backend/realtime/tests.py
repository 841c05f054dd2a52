from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, TransactionTestCase

from accounts.models import User
from drivers.models import DriverProfile
from rides.engine import reset_engine

from services.matching import (
    DispatchSession,
    Location,
    ManualClock,
    NoDriverAvailableError,
    OfferState,
    RideRequest,
    RideStatus,
)
from services.ride_management import create_ride_request
from .consumers import DriverConsumer, PassengerConsumer
from .notifications import ChannelsDispatchNotifier

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_session():
    ride = RideRequest(id=7, rider_id=21, pickup=Location(28.6139, 77.2090), requested_at=NOW)
    session = DispatchSession(ride=ride, created_at=NOW)
    offer = session.open_offer(5, NOW, 20)
    return session, offer


def ws_user(user_id, role):
    return SimpleNamespace(id=user_id, role=role, is_anonymous=False)


class ChannelsDispatchNotifierTests(SimpleTestCase):
    def setUp(self):
        self.layer = MagicMock()
        self.layer.group_send = AsyncMock()
        patcher = patch('realtime.notifications.get_channel_layer', return_value=self.layer)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.notifier = ChannelsDispatchNotifier()

    def sent(self):
        return [(c.args[0], c.args[1]) for c in self.layer.group_send.call_args_list]

    def test_offer_goes_to_driver_group(self):
        session, offer = make_session()

        self.notifier.offer_sent(session, offer)

        ((group, payload),) = self.sent()
        self.assertEqual(group, 'driver_5')
        self.assertEqual(payload['type'], 'ride_offer')
        self.assertEqual(payload['ride_id'], 7)
        self.assertEqual(payload['expires_at'], (NOW + timedelta(seconds=20)).isoformat())
        self.assertEqual(payload['ride_data']['pickup_latitude'], 28.6139)

    def test_timed_out_offer(self):
        session, offer = make_session()
        session.resolve_offer(OfferState.EXPIRED, NOW)

        self.notifier.offer_closed(session, offer)

        ((group, payload),) = self.sent()
        self.assertEqual(payload['type'], 'offer_closed')
        self.assertEqual(payload['state'], 'expired')
        self.assertEqual(payload['message'], 'Your ride offer has timed out.')

    def test_match_reaches_rider_and_driver(self):
        session, offer = make_session()
        session.resolve_offer(OfferState.ACCEPTED, NOW)
        session.finish(RideStatus.MATCHED, NOW)

        self.notifier.session_finished(session)

        groups = {group: payload for group, payload in self.sent()}
        self.assertEqual(set(groups), {'user_21', 'driver_5'})
        self.assertEqual(groups['user_21']['type'], 'ride_matched')
        self.assertEqual(groups['user_21']['driver_id'], 5)
        self.assertIn('ride_data', groups['driver_5'])

    def test_failure_carries_reason(self):
        session, offer = make_session()
        session.resolve_offer(OfferState.REJECTED, NOW)
        session.finish(RideStatus.FAILED, NOW, NoDriverAvailableError('none left'))

        self.notifier.session_finished(session)

        ((group, payload),) = self.sent()
        self.assertEqual(group, 'user_21')
        self.assertEqual(payload['type'], 'ride_failed')
        self.assertEqual(payload['reason'], 'no_driver_available')

    def test_missing_channel_layer_is_logged(self):
        session, offer = make_session()

        with patch('realtime.notifications.get_channel_layer', return_value=None):
            with self.assertLogs('realtime.notifications', level='WARNING'):
                self.notifier.offer_sent(session, offer)


class DriverConsumerTests(SimpleTestCase):

    async def connect(self, user):
        communicator = WebsocketCommunicator(DriverConsumer.as_asgi(), '/ws/driver/')
        communicator.scope['user'] = user
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    @patch('drivers.services.set_location_sharing')
    @patch('drivers.services.ingest_location', return_value=True)
    async def test_location_stream(self, mock_ingest, mock_sharing):
        communicator = await self.connect(ws_user(5, 'driver'))
        welcome = await communicator.receive_json_from()
        self.assertEqual(welcome['type'], 'connection_established')

        await communicator.send_json_to({
            'type': 'driver_location_update',
            'latitude': 28.6139,
            'longitude': 77.2090,
        })
        reply = await communicator.receive_json_from()

        self.assertEqual(reply, {'type': 'location_updated', 'applied': True})
        mock_ingest.assert_called_once_with(5, 28.6139, 77.2090, timestamp=None, is_location_active=True)

        await communicator.disconnect()
        mock_sharing.assert_called_once_with(5, False)

    @patch('drivers.services.set_location_sharing')
    async def test_offers_are_forwarded(self, mock_sharing):
        communicator = await self.connect(ws_user(6, 'driver'))
        await communicator.receive_json_from()

        await get_channel_layer().group_send('driver_6', {
            'type': 'ride_offer',
            'ride_id': 3,
            'offer_id': 'abc',
            'expires_at': NOW.isoformat(),
            'ride_data': {'ride_id': 3},
        })
        event = await communicator.receive_json_from()

        self.assertEqual(event['type'], 'ride_offer')
        self.assertEqual(event['offer_id'], 'abc')
        await communicator.disconnect()

    @patch('drivers.services.set_location_sharing')
    async def test_bad_messages(self, mock_sharing):
        communicator = await self.connect(ws_user(5, 'driver'))
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'offer_response', 'ride_id': 3})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')

        await communicator.send_json_to({'type': 'driver_location_update', 'latitude': 1})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')

        await communicator.send_json_to({'type': 'nonsense'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')
        await communicator.disconnect()

    async def test_passengers_are_turned_away(self):
        communicator = await self.connect(ws_user(9, 'user'))

        error = await communicator.receive_json_from()

        self.assertEqual(error['type'], 'error')
        self.assertEqual((await communicator.receive_output())['type'], 'websocket.close')
        await communicator.disconnect()


class PassengerConsumerTests(SimpleTestCase):

    async def test_outcome_reaches_passenger(self):
        communicator = WebsocketCommunicator(PassengerConsumer.as_asgi(), '/ws/passenger/')
        communicator.scope['user'] = ws_user(21, 'user')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.receive_json_from()

        await get_channel_layer().group_send('user_21', {
            'type': 'ride_expired',
            'ride_id': 7,
            'reason': None,
            'message': 'No driver accepted your ride in time.',
        })
        event = await communicator.receive_json_from()

        self.assertEqual(event['type'], 'ride_expired')
        self.assertEqual(event['ride_id'], 7)
        await communicator.disconnect()

    async def test_anonymous_is_rejected(self):
        communicator = WebsocketCommunicator(PassengerConsumer.as_asgi(), '/ws/passenger/')
        communicator.scope['user'] = SimpleNamespace(is_anonymous=True)

        connected, _ = await communicator.connect()

        self.assertFalse(connected)


class DriverReconnectTests(TransactionTestCase):
    """Runs against the real engine and database, through the consumer."""

    def setUp(self):
        self.engine = reset_engine(clock=ManualClock())
        self.driver = User.objects.create_user(
            username='ws-driver', password='driver1234', role='driver', phone_number='9000000101'
        )
        DriverProfile.objects.create(
            user=self.driver,
            vehicle_number='WB-3001',
            status='online',
            verification_status='approved',
            is_location_active=True,
        )
        self.passenger = User.objects.create_user(
            username='ws-passenger', password='pass1234', role='user', phone_number='9000000100'
        )

    async def open_socket(self):
        communicator = WebsocketCommunicator(DriverConsumer.as_asgi(), '/ws/driver/')
        communicator.scope['user'] = self.driver
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.receive_json_from()
        return communicator

    async def test_reconnected_driver_is_offered_rides_again(self):
        communicator = await self.open_socket()
        await communicator.disconnect()
        self.assertFalse(self.engine.registry.get(self.driver.id).is_location_active)

        communicator = await self.open_socket()
        await communicator.send_json_to({
            'type': 'driver_location_update',
            'latitude': 28.6139,
            'longitude': 77.2090,
        })
        self.assertEqual(await communicator.receive_json_from(), {'type': 'location_updated', 'applied': True})
        self.assertTrue(self.engine.registry.get(self.driver.id).is_location_active)

        result = await database_sync_to_async(create_ride_request)(self.passenger, 28.6140, 77.2091)

        self.assertEqual(result.extra['matching']['status'], 'offering')
        self.assertEqual(result.extra['matching']['current_offer']['driver_id'], self.driver.id)
        offer = await communicator.receive_json_from()
        self.assertEqual(offer['type'], 'ride_offer')
        self.assertEqual(offer['ride_id'], result.ride.id)
        await communicator.disconnect()
