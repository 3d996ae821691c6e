"""数量步进工具（仓位 sizing 时把数量向下裁剪到交易步进）。"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal


def decimals_from_step(step: float) -> int:
    """根据 step（1、0.1、0.001 ...）推导小数位数。"""
    d = Decimal(str(step))
    if d == 0:
        return 0
    return max(0, -int(d.as_tuple().exponent))


def floor_to_step(value: float, step: float | None) -> float:
    """
    把 value 向下裁剪到 step 的整数倍。

    - step 为 None 或 <= 0 时原样返回；
    - 用 Decimal 计算，避免 0.30000000000004 这类浮点噪声进入成交数量。
    """
    if step is None or float(step) <= 0:
        return float(value)
    v = Decimal(str(value))
    sd = Decimal(str(step))
    n = (v / sd).to_integral_value(rounding=ROUND_FLOOR)
    decs = decimals_from_step(float(step))
    out = (n * sd).quantize(Decimal(1).scaleb(-decs))
    return float(out)
