"""
Callback RPC

Вызов с продолжением (функция A вызывает функцию B и передает ей callback),
перенесенный на асинхронный обмен сообщениями через RabbitMQ: вызывающий
создает очередь ответа, передает ее имя в запросе и возобновляется,
когда воркер присылает результат в эту очередь.
"""

__version__ = "0.1.0"
