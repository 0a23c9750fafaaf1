import pytest
from datetime import timedelta

from backend.database.database import db, utcnow
from backend.models.missions import Delivery, Mission
from backend.utils import status as delivery_status
from backend.utils.errors import BadRequest, Forbidden, InvalidState


def _load(delivery_id):
    return db.session.get(Delivery, delivery_id)


class TestPaymentGuards:

    def test_creator_can_pay_validated_delivery(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED'))
        delivery_status.ensure_payable(delivery, marketplace['creator_id'])

    def test_pending_payment_can_be_retried(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED', payment_status='PENDING'))
        delivery_status.ensure_payable(delivery, marketplace['creator_id'])

    @pytest.mark.parametrize('status,payment_status', [
        ('CREATED', None),
        ('CREATED', 'PENDING'),
        ('VALIDATED', 'PAID'),
        ('FINAL_SENT', 'PAID'),
        ('FINAL_SENT', None),
        ('COMPLETED', 'PAID'),
    ])
    def test_other_states_are_rejected(self, app_ctx, marketplace, make_delivery, status, payment_status):
        delivery = _load(make_delivery(marketplace['mission_id'], status=status, payment_status=payment_status))
        with pytest.raises(InvalidState):
            delivery_status.ensure_payable(delivery, marketplace['creator_id'])

    @pytest.mark.parametrize('who', ['freelancer_id', 'outsider_id'])
    def test_only_creator_pays(self, app_ctx, marketplace, make_delivery, who):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED'))
        with pytest.raises(Forbidden):
            delivery_status.ensure_payable(delivery, marketplace[who])


class TestFinalSentAdvancement:

    def test_paid_delivery_with_final_moves_to_final_sent(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED',
                                       payment_status='PENDING', final_url='/uploads/final.png'))
        now = utcnow()

        assert delivery_status.mark_paid(delivery, payment_reference='pi_123', now=now)
        assert delivery_status.advance_to_final_sent(delivery, now=now)
        db.session.commit()

        delivery = _load(delivery.id)
        assert delivery.payment_status == 'PAID'
        assert delivery.stripe_payment_id == 'pi_123'
        assert delivery.status == 'FINAL_SENT'
        assert delivery.final_expires_at == now + timedelta(days=7)
        assert db.session.get(Mission, marketplace['mission_id']).status == 'COMPLETED'

    def test_second_advancement_is_a_no_op(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED',
                                       payment_status='PAID', final_url='/uploads/final.png'))
        first_now = utcnow()
        assert delivery_status.advance_to_final_sent(delivery, now=first_now)
        db.session.commit()

        assert not delivery_status.advance_to_final_sent(delivery, now=first_now + timedelta(days=1))
        db.session.commit()

        delivery = _load(delivery.id)
        assert delivery.status == 'FINAL_SENT'
        assert delivery.final_expires_at == first_now + timedelta(days=7)

    def test_completed_delivery_is_not_touched(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='COMPLETED',
                                       payment_status='PAID', final_url='/uploads/final.png'))
        assert not delivery_status.advance_to_final_sent(delivery)
        assert delivery.status == 'COMPLETED'

    def test_missing_final_asset_waits(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED', payment_status='PAID'))
        assert not delivery_status.advance_to_final_sent(delivery)
        db.session.commit()

        assert _load(delivery.id).status == 'VALIDATED'
        assert db.session.get(Mission, marketplace['mission_id']).status == 'IN_PROGRESS'

    def test_unpaid_delivery_is_not_released(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED',
                                       payment_status='PENDING', final_url='/uploads/final.png'))
        assert not delivery_status.advance_to_final_sent(delivery)
        assert delivery.status == 'VALIDATED'

    def test_mark_paid_never_repeats(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED', payment_status='PENDING'))
        first = utcnow()
        assert delivery_status.mark_paid(delivery, 'pi_1', now=first)
        assert not delivery_status.mark_paid(delivery, 'pi_2', now=first + timedelta(hours=1))
        assert delivery.paid_at == first
        assert delivery.stripe_payment_id == 'pi_1'


class TestDeliveryActions:

    def test_validate_then_send_final_before_payment(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id']))

        delivery_status.validate(delivery, marketplace['creator_id'])
        advanced = delivery_status.send_final(delivery, marketplace['freelancer_id'], '/uploads/final.png', 'final.png')
        db.session.commit()

        delivery = _load(delivery.id)
        assert not advanced
        assert delivery.status == 'VALIDATED'
        assert delivery.final_url == '/uploads/final.png'

    def test_send_final_after_payment_releases(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED', payment_status='PAID'))

        assert delivery_status.send_final(delivery, marketplace['freelancer_id'], '/uploads/final.png')
        db.session.commit()

        assert _load(delivery.id).status == 'FINAL_SENT'

    def test_freelancer_cannot_validate(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id']))
        with pytest.raises(Forbidden):
            delivery_status.validate(delivery, marketplace['freelancer_id'])

    def test_revision_round_trip(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id']))

        delivery_status.request_revision(delivery, marketplace['creator_id'], 'Bigger title please')
        assert delivery.revision_count == 1

        with pytest.raises(InvalidState):
            delivery_status.validate(delivery, marketplace['creator_id'])

        delivery_status.send_revision(delivery, marketplace['freelancer_id'], '/uploads/v2.png', 'image')
        assert delivery.revision_note is None
        assert delivery.protected_url == '/uploads/v2.png'
        assert delivery.status == 'CREATED'

        delivery_status.validate(delivery, marketplace['creator_id'])
        assert delivery.status == 'VALIDATED'

    def test_revision_needs_a_note(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id']))
        with pytest.raises(BadRequest):
            delivery_status.request_revision(delivery, marketplace['creator_id'], '')

    def test_complete_requires_final_sent(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id'], status='VALIDATED', payment_status='PAID'))
        with pytest.raises(InvalidState):
            delivery_status.complete(delivery, marketplace['creator_id'])

        delivery.status = 'FINAL_SENT'
        delivery_status.complete(delivery, marketplace['creator_id'])
        assert delivery.status == 'COMPLETED'

    def test_outsider_is_not_a_participant(self, app_ctx, marketplace, make_delivery):
        delivery = _load(make_delivery(marketplace['mission_id']))
        assert delivery_status.participant_role(delivery, marketplace['creator_id']) == 'creator'
        assert delivery_status.participant_role(delivery, marketplace['freelancer_id']) == 'freelancer'
        with pytest.raises(Forbidden):
            delivery_status.participant_role(delivery, marketplace['outsider_id'])
