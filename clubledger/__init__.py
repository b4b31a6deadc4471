"""
Расчет зарплаты по сменам и сверка выручки с финансовым журналом
"""
__version__ = "1.0.0"
