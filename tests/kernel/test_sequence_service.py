"""Tests for SequenceService counter allocation and transaction id format."""

from datetime import date

from inventory_kernel.services.sequence_service import SequenceService, date_key


class TestSequenceService:

    def test_first_value_is_one_then_increments(self, uow):
        with uow:
            service = SequenceService(uow.session)
            assert service.next_sequence("PO", "240101") == 1
            assert service.next_sequence("PO", "240101") == 2

    def test_counters_are_independent(self, uow):
        with uow:
            service = SequenceService(uow.session)
            service.next_sequence("PO", "240101")
            assert service.next_sequence("PO", "240102") == 1
            assert service.next_sequence("SO", "240101") == 1

    def test_values_survive_commit(self, uow):
        with uow:
            SequenceService(uow.session).next_value("PO240101")
        with uow:
            assert SequenceService(uow.session).next_value("PO240101") == 2

    def test_rolled_back_allocation_is_reused(self, uow):
        with uow:
            SequenceService(uow.session).next_value("PO240101")
        uow.begin()
        SequenceService(uow.session).next_value("PO240101")
        uow.rollback()
        with uow:
            service = SequenceService(uow.session)
            assert service.current_value("PO240101") == 1
            assert service.next_value("PO240101") == 2

    def test_current_value_of_unknown_counter(self, uow):
        with uow:
            assert SequenceService(uow.session).current_value("missing") is None


class TestTransactionIds:

    def test_date_key(self):
        assert date_key(date(2024, 1, 1)) == "240101"

    def test_default_width(self, uow):
        with uow:
            service = SequenceService(uow.session)
            assert service.next_transaction_id("PO", date(2024, 1, 1)) == "PO2401010001"
            assert service.next_transaction_id("PO", date(2024, 1, 1)) == "PO2401010002"

    def test_custom_width(self, uow):
        with uow:
            service = SequenceService(uow.session, width=6)
            assert service.next_transaction_id("SO", date(2024, 3, 9)) == "SO240309000001"
