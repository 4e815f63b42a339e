"""
Commission share computation (agent / unit manager / team leader).
"""

from decimal import Decimal

from lrsync.models import (
    CALC_NONVAT_WITH_INVOICE,
    CALC_NONVAT_WITHOUT_INVOICE,
    CALC_VAT_DEDUCTION,
    CALC_VAT_WITH_INVOICE,
    CommissionAgentBreakdown,
    compute_commission_share,
    compute_override_share,
)


def D(value):
    return Decimal(value)


class TestComputeShare:
    def test_nonvat_with_invoice(self):
        share = compute_commission_share(D("102000"), CALC_NONVAT_WITH_INVOICE, D("3"))
        assert share == {
            "net_of_vat": D("100000.00"),
            "amount": D("60000.00"),
            "vat": None,
            "ewt": D("3000.00"),
            "net_comm": D("57000.00"),
        }

    def test_vat_with_invoice_strips_two_percent_then_adds_vat(self):
        share = compute_commission_share(D("102000"), CALC_VAT_WITH_INVOICE, D("3"))
        assert share["net_of_vat"] == D("100000.00")
        assert share["amount"] == D("60000.00")
        assert share["vat"] == D("7200.00")
        assert share["ewt"] == D("3000.00")
        assert share["net_comm"] == D("64200.00")

    def test_vat_deduction_works_from_gross(self):
        share = compute_commission_share(D("112000"), CALC_VAT_DEDUCTION, D("3"))
        assert share == {
            "net_of_vat": None,
            "amount": D("67200.00"),
            "vat": D("7200.00"),
            "ewt": None,
            "net_comm": D("60000.00"),
        }

    def test_nonvat_without_invoice_is_net_only(self):
        share = compute_commission_share(D("100000"), CALC_NONVAT_WITHOUT_INVOICE, D("3"))
        assert share == {
            "net_of_vat": None,
            "amount": None,
            "vat": None,
            "ewt": None,
            "net_comm": D("60000.00"),
        }

    def test_custom_developer_and_ewt_rates(self):
        share = compute_commission_share(D("102000"), CALC_NONVAT_WITH_INVOICE, D("2"), D("4"), D("10"))
        assert share["amount"] == D("50000.00")
        assert share["ewt"] == D("5000.00")
        assert share["net_comm"] == D("45000.00")

    def test_rounding_half_up(self):
        share = compute_commission_share(D("1000"), CALC_NONVAT_WITH_INVOICE, D("1"))
        # 1000 / 1.02 = 980.392..., amount = 196.078...
        assert share["net_of_vat"] == D("980.39")
        assert share["amount"] == D("196.08")

    def test_missing_comm_yields_nothing(self):
        share = compute_commission_share(None, CALC_VAT_WITH_INVOICE, D("3"))
        assert set(share.values()) == {None}

    def test_zero_rate_yields_nothing(self):
        share = compute_commission_share(D("102000"), CALC_NONVAT_WITH_INVOICE, None)
        assert set(share.values()) == {None}


class TestOverrideShare:
    def test_invoiced_share_uses_agent_net_of_vat(self):
        share = compute_override_share(
            D("102000"), D("100000"), CALC_VAT_WITH_INVOICE, CALC_NONVAT_WITH_INVOICE, D("1")
        )
        assert share == {"amount": D("20000.00"), "vat": None, "ewt": D("1000.00"), "net_comm": D("19000.00")}

    def test_gross_agent_type_uses_comm(self):
        share = compute_override_share(D("112000"), None, CALC_VAT_DEDUCTION, CALC_VAT_WITH_INVOICE, D("1"))
        assert share["amount"] == D("22400.00")
        assert share["vat"] == D("2688.00")
        assert share["ewt"] == D("1120.00")
        assert share["net_comm"] == D("23968.00")

    def test_uninvoiced_share_uses_comm(self):
        share = compute_override_share(
            D("102000"), D("100000"), CALC_NONVAT_WITH_INVOICE, CALC_NONVAT_WITHOUT_INVOICE, D("1")
        )
        assert share == {"amount": D("20400.00"), "vat": None, "ewt": None, "net_comm": D("20400.00")}

    def test_vat_deduction_share(self):
        share = compute_override_share(D("112000"), None, CALC_VAT_DEDUCTION, CALC_VAT_DEDUCTION, D("1"))
        assert share["amount"] == D("22400.00")
        assert share["net_comm"] == D("20000.00")
        assert share["vat"] == D("2400.00")
        assert share["ewt"] is None

    def test_zero_rate(self):
        share = compute_override_share(D("102000"), D("100000"), None, None, D("0"))
        assert set(share.values()) == {None}


class TestBreakdownRecalc:
    def test_agent_and_um_blocks(self):
        row = CommissionAgentBreakdown(
            agent_name="Carla",
            comm=D("102000"),
            calculation_type=CALC_VAT_WITH_INVOICE,
            agents_rate=D("3"),
            um_name="Dino",
            um_rate=D("1"),
            um_calculation_type=CALC_NONVAT_WITH_INVOICE,
        )
        row.recalc()

        assert row.net_of_vat == D("100000.00")
        assert row.agent_net_comm == D("64200.00")
        assert row.um_amount == D("20000.00")
        assert row.um_vat is None
        assert row.um_net_comm == D("19000.00")

    def test_um_follows_agent_type_when_unset(self):
        row = CommissionAgentBreakdown(
            agent_name="Carla",
            comm=D("112000"),
            calculation_type=CALC_VAT_DEDUCTION,
            agents_rate=D("3"),
            um_name="Dino",
            um_rate=D("1"),
        )
        row.recalc()

        assert row.net_of_vat is None
        assert row.agent_net_comm == D("60000.00")
        assert row.um_net_comm == D("20000.00")

    def test_team_leader_without_name_is_skipped(self):
        row = CommissionAgentBreakdown(agent_name="Carla", comm=D("102000"), agents_rate=D("3"), tl_rate=D("1"))
        row.recalc()
        assert row.agent_amount == D("60000.00")
        assert row.tl_amount is None
