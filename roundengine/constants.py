# Redis key helpers
def k_cart(owner: str) -> str:
    return f"roundengine:cart:{owner}"

# 颜色盘（与后端 TradingColor 一致，共 12 个）
COLORS = (
    "red", "blue", "green", "yellow", "orange", "purple",
    "pink", "brown", "cyan", "magenta", "lime", "violet",
)

# 数字 0..100，以字符串形式参与下单
NUMBER_MIN = 0
NUMBER_MAX = 100
NUMBERS = tuple(str(n) for n in range(NUMBER_MIN, NUMBER_MAX + 1))

# 快捷下注金额档位
PLAN_AMOUNTS = (10, 20, 50, 100)
