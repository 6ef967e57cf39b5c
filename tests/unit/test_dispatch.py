#!/usr/bin/env python3
"""
Testes unitários para o despacho em background.
"""

import threading
import time

import coolhand.dispatch as dispatch_module
from coolhand.dispatch import Dispatcher, InlineDispatcher


class RecordingLogger:
    """Logger falso que guarda as chamadas de erro."""

    def __init__(self):
        self.errors = []

    def error(self, event, **fields):
        self.errors.append((event, fields))


class TestDispatcher:
    """Testes para a classe Dispatcher."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.dispatcher = Dispatcher()
        self.release = threading.Event()
        self.done = []

    def slow_send(self, value):
        self.release.wait(5)
        self.done.append(value)

    def failing_send(self):
        raise RuntimeError("collector fora do ar")

    def test_submit_returns_before_task_finishes(self):
        """Testa que submit não espera o envio terminar."""
        started = time.monotonic()
        thread = self.dispatcher.submit(self.slow_send, "payload")
        elapsed = time.monotonic() - started

        assert elapsed < 1
        assert thread.is_alive()
        assert self.done == []

        self.release.set()
        thread.join(5)

        assert not thread.is_alive()
        assert self.done == ["payload"]

    def test_thread_is_daemon_and_named(self):
        """Testa que a thread não segura o encerramento do processo."""
        thread = self.dispatcher.submit(self.slow_send, "payload")
        self.release.set()
        thread.join(5)

        assert thread.daemon is True
        assert thread.name == "coolhand-dispatch-slow_send"

    def test_task_error_is_logged_not_raised(self, monkeypatch):
        """Testa que exceções do envio são logadas e não propagam."""
        recorder = RecordingLogger()
        monkeypatch.setattr(dispatch_module, "logger", recorder)

        thread = self.dispatcher.submit(self.failing_send)
        thread.join(5)

        assert not thread.is_alive()
        assert recorder.errors == [
            ("Erro no despacho em background", {"task": "failing_send", "error": "collector fora do ar"})
        ]


class TestInlineDispatcher:
    """Testes para a classe InlineDispatcher."""

    def test_runs_in_calling_thread(self):
        """Testa execução imediata na thread chamadora."""
        seen = []

        result = InlineDispatcher().submit(lambda: seen.append(threading.current_thread()))

        assert result is None
        assert seen == [threading.current_thread()]

    def test_task_error_is_logged_not_raised(self, monkeypatch):
        """Testa que o erro também é contido no modo inline."""
        recorder = RecordingLogger()
        monkeypatch.setattr(dispatch_module, "logger", recorder)

        def explode():
            raise ValueError("boom")

        InlineDispatcher().submit(explode)

        assert recorder.errors[0][1]["task"] == "explode"
