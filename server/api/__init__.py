"""Джерела handler-ів, які сервер реєструє на старті.

Кожен публічний модуль пакета сканується `server.registry.load_registry`;
ключ handler-а = `<шлях модуля відносно пакета>:<ім'я експорту>`,
наприклад `counter:get_counter`. Модулі з `_` на початку не скануються.
"""
