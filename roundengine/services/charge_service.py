from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from roundengine.core.config import settings

MODE_ADDITIVE = "additive"   # 服务费加在本金之上，一并支付
MODE_DEDUCTED = "deducted"   # 服务费从派彩中扣除，下单时只付本金


def q2(v) -> Decimal:
    return Decimal(v).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class ChargeModel:
    """每条订单服务费 = max(rate x amount, minimum)"""

    def __init__(self, rate=None, minimum=None, mode: str | None = None):
        self.rate = Decimal(str(rate if rate is not None else settings.SERVICE_CHARGE_RATE))
        self.minimum = Decimal(str(minimum if minimum is not None else settings.SERVICE_CHARGE_MIN))
        self.mode = (mode or settings.SERVICE_CHARGE_MODE).lower()
        if self.mode not in (MODE_ADDITIVE, MODE_DEDUCTED):
            raise ValueError(f"unknown service charge mode: {self.mode}")

    def charge_for(self, amount: Decimal) -> Decimal:
        return q2(max(Decimal(amount) * self.rate, self.minimum))

    def service_charge(self, amounts: Iterable[Decimal]) -> Decimal:
        return q2(sum((self.charge_for(a) for a in amounts), Decimal("0")))

    def final_amount(self, total: Decimal, charge: Decimal) -> Decimal:
        if self.mode == MODE_ADDITIVE:
            return q2(total + charge)
        return q2(total)
