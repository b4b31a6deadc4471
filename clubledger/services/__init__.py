"""
Сервисы расчета зарплаты и проводки выручки
"""
