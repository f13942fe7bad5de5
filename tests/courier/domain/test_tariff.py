"""Tests for the tariff rules behind quotes."""

import pytest
from courier.intake.intake import ShipmentIntake
from courier.pricing.tariff import (
    Region,
    RouteType,
    city_of,
    express_fee,
    quote,
    region_of,
    route_type_for,
    standard_fee,
    vehicle_type_for,
)
from protean.exceptions import ValidationError


class TestGeography:
    @pytest.mark.parametrize(
        "code, name, region",
        [
            ("01", None, Region.NORTH),
            ("48", None, Region.CENTRAL),
            ("79", None, Region.SOUTH),
            ("", "Da Nang", Region.CENTRAL),
            ("HCM", "", Region.SOUTH),
        ],
    )
    def test_region_of(self, code, name, region):
        assert region_of(code, name) == region

    def test_unknown_province_has_no_region(self):
        assert region_of("", "Atlantis") is None

    def test_city_of(self):
        assert city_of("79") == "HCM"
        assert city_of("", "Ha Noi") == "HANOI"
        assert city_of("48") == "OTHER"

    @pytest.mark.parametrize(
        "sender, receiver, route",
        [
            ("79", "79", RouteType.INTRA_PROVINCE),
            ("79", "80", RouteType.INTRA_REGION),
            ("79", "48", RouteType.ADJACENT_REGION),
            ("79", "01", RouteType.CROSS_REGION),
        ],
    )
    def test_route_type(self, sender, receiver, route):
        assert route_type_for({"province_code": sender}, {"province_code": receiver}) == route


class TestStandardFee:
    def test_base_price_up_to_three_kg(self):
        assert standard_fee(RouteType.CROSS_REGION, 1.5) == (35000, 35000, 0)

    def test_surcharge_per_started_half_kg(self):
        assert standard_fee(RouteType.INTRA_PROVINCE, 4.2) == (37500, 30000, 7500)

    def test_banded_price(self):
        assert standard_fee(RouteType.ADJACENT_REGION, 25)[0] == 260000

    def test_over_fifty_kg(self):
        assert standard_fee(RouteType.CROSS_REGION, 60)[0] == 600000

    def test_over_maximum_weight_rejected(self):
        with pytest.raises(ValidationError):
            standard_fee(RouteType.INTRA_PROVINCE, 301)


class TestExpressFee:
    def test_light_small_parcel(self):
        assert express_fee("HCM", "HCM", 3, 6000) == 50000

    def test_heavier_medium_parcel(self):
        assert express_fee("HANOI", "HANOI", 6, 50000) == 70000

    def test_inter_city_rejected(self):
        with pytest.raises(ValidationError) as exc:
            express_fee("HCM", "HANOI", 3, 6000)
        assert "service_type" in exc.value.messages

    def test_overweight_rejected(self):
        with pytest.raises(ValidationError):
            express_fee("HCM", "HCM", 21, 6000)


class TestQuote:
    def test_quote_from_intake_payload(self, intake_data):
        result = quote(ShipmentIntake.from_dict(intake_data()).to_payload())

        assert result.estimated_fee == 35000
        assert result.route_type == "cross_region"
        assert result.sla == "7 days"
        assert result.actual_weight == 1.5
        assert result.volumetric_weight == 1.2
        assert result.chargeable_weight == 1.5
        assert result.vehicle_type == "MOTORBIKE"

    def test_volumetric_weight_is_chargeable_when_larger(self, intake_data):
        data = intake_data()
        data["items"][0].update({"length_cm": 50, "width_cm": 50, "height_cm": 20})
        result = quote(ShipmentIntake.from_dict(data).to_payload())

        assert result.volumetric_weight == 10.0
        assert result.chargeable_weight == 10.0
        assert result.extra_weight_price > 0

    def test_vehicle_type_by_weight(self):
        assert vehicle_type_for(1.5, 6000) == "MOTORBIKE"
        assert vehicle_type_for(100, 6000) == "VAN"
        assert vehicle_type_for(600, 6000) == "TRUCK"
