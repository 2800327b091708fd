from datetime import datetime, timedelta, timezone
from decimal import Decimal
import unittest

from fleet_billing.billing import needs_distance, price_vehicles, resolve_distance
from fleet_billing.core import (
    ThresholdPolicy,
    day_count,
    noon_utc,
    quote_from_fields,
    quote_to_fields,
    resolve_advance_amount,
    resolve_rate,
)
from fleet_billing.exceptions import DateRangeValidationError, DistanceValidationError, RateValidationError
from fleet_billing.models import (
    AssignedVehicle,
    BillableVehicle,
    Booking,
    DistanceInput,
    HybridRate,
    PerDayRate,
    PerKmRate,
    RequestedVehicle,
    TotalRate,
)
from fleet_billing.reconciler import billable_vehicles_for_booking


def _booking(requested=(), assigned=(), advance_amount=None):
    return Booking(
        id=7,
        booking_ref="BK-7",
        customer_name="Asha",
        customer_phone="1",
        start_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        end_at=datetime(2026, 3, 2, tzinfo=timezone.utc),
        status="confirmed",
        advance_amount=advance_amount,
        requested_vehicles=tuple(requested),
        assigned_vehicles=tuple(assigned),
    )


class RateResolutionTestCase(unittest.TestCase):
    def setUp(self):
        self.policy = ThresholdPolicy()

    def test_per_km_below_floor_bills_minimum_and_explains_it(self):
        resolution = resolve_rate(PerKmRate(Decimal("10")), 2, Decimal("400"), self.policy)

        self.assertEqual(resolution.final_amount, Decimal("6000.00"))
        self.assertEqual(resolution.charged_km, Decimal("600"))
        self.assertEqual(resolution.breakdown["minimum_km"], Decimal("600"))
        self.assertEqual(resolution.breakdown["actual_km"], Decimal("400"))
        self.assertEqual(
            resolution.threshold_note,
            "Minimum KM threshold applied: 300 km/day × 2 days = 600 km (Company Policy). Actual KM: 400 km.",
        )

    def test_hybrid_above_floor_adds_day_and_distance_parts(self):
        resolution = resolve_rate(HybridRate(Decimal("1000"), Decimal("8")), 3, Decimal("1200"), self.policy)

        self.assertEqual(resolution.final_amount, Decimal("12600.00"))
        self.assertEqual(resolution.breakdown["base_amount"], Decimal("3000.00"))
        self.assertEqual(resolution.breakdown["km_amount"], Decimal("9600.00"))
        self.assertIsNone(resolution.threshold_note)

    def test_total_and_per_day_ignore_distance(self):
        total = resolve_rate(TotalRate(Decimal("5000")), 9, Decimal("0"), self.policy)
        per_day = resolve_rate(PerDayRate(Decimal("1500")), 4, Decimal("0"), self.policy)

        self.assertEqual(total.final_amount, Decimal("5000.00"))
        self.assertEqual(set(total.breakdown), {"rate_total", "final_amount"})
        self.assertEqual(per_day.final_amount, Decimal("6000.00"))
        self.assertEqual(per_day.breakdown["days"], 4)
        self.assertNotIn("rate_per_km", per_day.breakdown)

    def test_configured_floor_replaces_default(self):
        policy = ThresholdPolicy.from_config({"minimum_km_per_km": "250"}.get)
        resolution = resolve_rate(PerKmRate(Decimal("12")), 1, Decimal("100"), policy)

        self.assertEqual(resolution.final_amount, Decimal("3000.00"))
        self.assertEqual(policy.floor_for("per_km", 3), Decimal("750"))
        self.assertEqual(policy.floor_for("per_day", 3), Decimal("0"))
        self.assertEqual(policy.hybrid_floor, Decimal("300"))

    def test_unparsable_floor_falls_back_with_warning(self):
        with self.assertLogs("fleet_billing.core", level="WARNING"):
            policy = ThresholdPolicy.from_config({"minimum_km_per_km": "lots", "minimum_km_hybrid_per_day": "-5"}.get)

        self.assertEqual(policy.per_km_floor, Decimal("300"))
        self.assertEqual(policy.hybrid_floor, Decimal("300"))

    def test_billed_distance_never_below_floor(self):
        for days in (1, 2, 5):
            for actual in ("0", "150", "300", "1499.5", "2000"):
                resolution = resolve_rate(PerKmRate(Decimal("9")), days, Decimal(actual), self.policy)
                self.assertGreaterEqual(resolution.charged_km, Decimal("300") * days)
                self.assertGreaterEqual(resolution.charged_km, Decimal(actual))

    def test_per_km_three_days_under_floor(self):
        resolution = resolve_rate(PerKmRate(Decimal("12")), 3, Decimal("700"), self.policy)

        self.assertEqual(resolution.charged_km, Decimal("900"))
        self.assertEqual(resolution.final_amount, Decimal("10800.00"))
        self.assertIsNotNone(resolution.threshold_note)

    def test_hybrid_above_lowered_floor_has_no_note(self):
        policy = ThresholdPolicy.from_config({"minimum_km_hybrid_per_day": "250"}.get)
        resolution = resolve_rate(HybridRate(Decimal("2000"), Decimal("10")), 2, Decimal("600"), policy)

        self.assertEqual(resolution.breakdown["minimum_km"], Decimal("500"))
        self.assertEqual(resolution.charged_km, Decimal("600"))
        self.assertEqual(resolution.final_amount, Decimal("10000.00"))
        self.assertIsNone(resolution.threshold_note)

    def test_money_rounds_half_up_to_cents(self):
        resolution = resolve_rate(PerKmRate(Decimal("0.125")), 1, Decimal("301"), self.policy)

        self.assertEqual(resolution.final_amount, Decimal("37.63"))


class QuoteFieldsTestCase(unittest.TestCase):
    def test_quote_renders_back_to_flat_fields(self):
        self.assertEqual(
            quote_to_fields(PerKmRate(Decimal("12"))),
            {"rate_type": "per_km", "rate_total": None, "rate_per_day": None, "rate_per_km": Decimal("12")},
        )
        hybrid = HybridRate(Decimal("900"), Decimal("7"))
        self.assertEqual(quote_from_fields(**quote_to_fields(hybrid)), hybrid)

    def test_strict_quote_requires_positive_fields(self):
        with self.assertRaises(RateValidationError):
            quote_from_fields("per_km", strict=True)
        with self.assertRaises(RateValidationError):
            quote_from_fields("hybrid", rate_per_day="1000", rate_per_km="0", strict=True)

        quote = quote_from_fields("hybrid", rate_per_day="1000", rate_per_km=8.5, strict=True)
        self.assertEqual(quote, HybridRate(Decimal("1000"), Decimal("8.5")))

    def test_lenient_quote_prices_missing_fields_as_zero(self):
        self.assertEqual(quote_from_fields("per_day"), PerDayRate(Decimal("0")))

    def test_invalid_values_are_always_rejected(self):
        for bad in ("-1", "NaN", "Infinity", "ten"):
            with self.assertRaises(RateValidationError):
                quote_from_fields("total", rate_total=bad)
        with self.assertRaises(RateValidationError):
            quote_from_fields("weekly", rate_total="1")


class DayCountTestCase(unittest.TestCase):
    def test_partial_days_round_up_and_floor_at_one(self):
        start = datetime(2026, 3, 1, 10, tzinfo=timezone.utc)

        self.assertEqual(day_count(start, start), 1)
        self.assertEqual(day_count(start, start + timedelta(hours=3)), 1)
        self.assertEqual(day_count(start, start + timedelta(hours=47)), 2)
        self.assertEqual(day_count(start, start + timedelta(days=2)), 2)
        self.assertEqual(day_count(start, start + timedelta(days=2, seconds=1)), 3)

    def test_end_before_start_is_rejected(self):
        start = datetime(2026, 3, 1, 10, tzinfo=timezone.utc)
        with self.assertRaises(DateRangeValidationError):
            day_count(start, start - timedelta(minutes=1))

    def test_date_only_inputs_anchor_at_noon_utc(self):
        start = noon_utc(datetime(2026, 3, 1).date())

        self.assertEqual(start, datetime(2026, 3, 1, 12, tzinfo=timezone.utc))
        self.assertEqual(day_count(start, noon_utc(datetime(2026, 3, 5).date())), 4)


class ReconcilerTestCase(unittest.TestCase):
    def setUp(self):
        self.innova = RequestedVehicle(
            id=1,
            booking_id=7,
            brand="Toyota",
            model="Innova",
            rate_type="per_day",
            rate_per_day=Decimal("2000"),
            driver_allowance_per_day=Decimal("500"),
            advance_amount=Decimal("1500"),
        )
        self.dzire = RequestedVehicle(
            id=2, booking_id=7, brand="Maruti", model="Dzire", rate_type="total", rate_total=Decimal("3000")
        )

    def test_assigned_vehicles_follow_link_then_override_then_skip(self):
        booking = _booking(
            requested=[self.innova, self.dzire],
            assigned=[
                AssignedVehicle(id=11, booking_id=7, vehicle_number="KA-01", requested_vehicle_id=1),
                AssignedVehicle(
                    id=12, booking_id=7, vehicle_number="KA-02", rate_type="per_km", rate_per_km=Decimal("15")
                ),
                AssignedVehicle(id=13, booking_id=7, vehicle_number="KA-03"),
            ],
        )

        with self.assertLogs("fleet_billing.reconciler", level="INFO"):
            vehicles = billable_vehicles_for_booking(booking)

        self.assertEqual([v.vehicle_number for v in vehicles], ["KA-01", "KA-02"])
        self.assertEqual(vehicles[0].quote, PerDayRate(Decimal("2000")))
        self.assertEqual(vehicles[0].driver_allowance_per_day, Decimal("500"))
        self.assertEqual(vehicles[1].quote, PerKmRate(Decimal("15")))
        self.assertEqual(vehicles[1].assigned_vehicle_id, 12)

    def test_unassigned_booking_bills_requested_vehicles_by_name(self):
        vehicles = billable_vehicles_for_booking(_booking(requested=[self.innova, self.dzire]))

        self.assertEqual([v.vehicle_number for v in vehicles], ["Toyota Innova", "Maruti Dzire"])
        self.assertIsNone(vehicles[0].assigned_vehicle_id)

    def test_missing_car_number_shows_placeholder(self):
        booking = _booking(requested=[self.innova], assigned=[AssignedVehicle(id=11, booking_id=7, requested_vehicle_id=1)])

        self.assertEqual(billable_vehicles_for_booking(booking)[0].vehicle_number, "N/A")

    def test_advance_falls_back_to_first_requested_vehicle(self):
        self.assertEqual(resolve_advance_amount(_booking(requested=[self.innova])), Decimal("1500.00"))
        self.assertEqual(
            resolve_advance_amount(_booking(requested=[self.innova], advance_amount=Decimal("0"))),
            Decimal("1500.00"),
        )
        self.assertEqual(
            resolve_advance_amount(_booking(requested=[self.innova], advance_amount=Decimal("2000"))),
            Decimal("2000.00"),
        )
        self.assertEqual(resolve_advance_amount(_booking(requested=[self.dzire])), Decimal("0.00"))


class BillComputationTestCase(unittest.TestCase):
    def test_totals_and_first_threshold_note_win(self):
        vehicles = [
            BillableVehicle(vehicle_number="A", quote=TotalRate(Decimal("5000")), driver_allowance_per_day=Decimal("400")),
            BillableVehicle(vehicle_number="B", quote=PerKmRate(Decimal("10"))),
            BillableVehicle(vehicle_number="C", quote=HybridRate(Decimal("1000"), Decimal("5"))),
        ]

        computation = price_vehicles(vehicles, 2, Decimal("100"), ThresholdPolicy(hybrid_floor=Decimal("200")))

        self.assertEqual(computation.total_amount, Decimal("5000.00") + Decimal("6000.00") + Decimal("4000.00"))
        self.assertEqual(computation.total_driver_allowance, Decimal("800.00"))
        self.assertIn("300 km/day", computation.threshold_note)
        self.assertIn("200 km/day", computation.lines[2].threshold_note)

    def test_distance_is_only_required_for_distance_pricing(self):
        flat = [BillableVehicle(vehicle_number="A", quote=PerDayRate(Decimal("100")))]

        self.assertFalse(needs_distance(flat))
        self.assertEqual(resolve_distance(None, required=False).km, Decimal("0"))
        with self.assertRaises(DistanceValidationError):
            resolve_distance(None, required=True)

    def test_distance_evidence_must_be_positive(self):
        for readings in ((Decimal("500"), Decimal("400")), (Decimal("500"), Decimal("500"))):
            with self.assertRaises(DistanceValidationError):
                resolve_distance(DistanceInput("odometer", *readings), required=True)
        for km in (Decimal("-1"), Decimal("0")):
            with self.assertRaises(DistanceValidationError):
                resolve_distance(DistanceInput("manual", manual_km=km), required=True)

        driven = resolve_distance(DistanceInput("odometer", Decimal("500"), Decimal("501")), required=True)
        self.assertEqual(driven.km, Decimal("1"))
        self.assertEqual(driven.method, "odometer")


if __name__ == "__main__":
    unittest.main()
