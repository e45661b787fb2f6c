"""End-to-end runs of SavingsWatcher against a scripted mail session."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from savings_watcher.config import ImapConfig, MailerConfig, SavingsConfig
from savings_watcher.hooks import HookRegistry
from savings_watcher.loader import load_config_module
from savings_watcher.mailer import Mailer
from savings_watcher.models import MailArrived
from savings_watcher.pipeline import SavingsWatcher
from savings_watcher.plugin import SavingsPlugin


class TotalPlugin(SavingsPlugin):
    def post_parse(self, matches, envelope, aggregate):
        aggregate.data["total"] = round(aggregate.data.get("total", 0) + float(matches[0].group(1)), 2)
        return True


@pytest.fixture
def e2e_config(savings_config: SavingsConfig) -> SavingsConfig:
    savings_config.processed_box = "Savings"
    return savings_config


class TestSavingsWatcher:
    @pytest.mark.asyncio
    async def test_saved_amount_flows_to_save_file(
        self, e2e_config, make_session, make_message, save_path: Path
    ):
        session = make_session(
            events=[MailArrived(1)],
            search_results=[42],
            fetch_events=make_message(
                1, 42, text="Transfer complete.\nYou saved $12.34 today."
            ),
        )
        plugin = TotalPlugin()
        watcher = SavingsWatcher(
            e2e_config, HookRegistry.from_object(plugin), plugin=plugin, session=session
        )

        assert await watcher.run() == 0

        assert session.call_names == [
            "connect",
            "open_mailbox",
            "search",
            "fetch",
            "add_flags",
            "move",
            "expunge",
            "logout",
        ]
        assert ("add_flags", [42], ["Seen", "Deleted"]) in session.calls
        assert ("move", [42], "Savings") in session.calls
        assert json.loads(save_path.read_text()) == {"total": 12.34}

    @pytest.mark.asyncio
    async def test_existing_save_file_is_continued(
        self, e2e_config, make_session, make_message, save_path: Path
    ):
        save_path.write_text('{"total": 1.0}')
        session = make_session(
            events=[MailArrived(1)],
            search_results=[42],
            fetch_events=make_message(1, 42, text="You saved $12.34"),
        )
        plugin = TotalPlugin()
        watcher = SavingsWatcher(
            e2e_config, HookRegistry.from_object(plugin), plugin=plugin, session=session
        )

        await watcher.run()
        assert json.loads(save_path.read_text()) == {"total": 13.34}

    @pytest.mark.asyncio
    async def test_unlisted_sender_leaves_mailbox_untouched(
        self, e2e_config, make_session, make_message, save_path: Path
    ):
        session = make_session(
            events=[MailArrived(1)],
            search_results=[42],
            fetch_events=make_message(1, 42, sender="spam@example.com", text="You saved $99.00"),
        )
        plugin = TotalPlugin()
        watcher = SavingsWatcher(
            e2e_config, HookRegistry.from_object(plugin), plugin=plugin, session=session
        )

        await watcher.run()
        assert "add_flags" not in session.call_names
        assert json.loads(save_path.read_text()) == {}

    @pytest.mark.asyncio
    async def test_plugin_bound_to_extras_and_mailer(self, e2e_config, make_session):
        e2e_config.extras = {"notify": "me@example.com"}
        e2e_config.mailer = MailerConfig(host="smtp.test.com")
        plugin = TotalPlugin()

        SavingsWatcher(e2e_config, HookRegistry.from_object(plugin), plugin=plugin, session=make_session())

        assert plugin.extras == {"notify": "me@example.com"}
        assert plugin.mailer.configured is True

    @pytest.mark.asyncio
    async def test_missing_credentials_exit_code(self, e2e_config, make_session):
        e2e_config.imap = ImapConfig(host="imap.test.com")
        session = make_session()
        watcher = SavingsWatcher(e2e_config, session=session)

        assert await watcher.run() == 1
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_module_hook_sends_mail(self, e2e_config, make_session, make_message, tmp_path: Path):
        config_file = tmp_path / "notify_config.py"
        config_file.write_text(
            "def post_parse(matches, envelope, aggregate):\n"
            "    mailer.send_mail_soon(extras['notify'], 'bot@x.com', 'Saved', matches[0].group(0))\n"
            "    return True\n"
        )
        loaded = load_config_module(config_file)
        e2e_config.extras = {"notify": "me@example.com"}
        e2e_config.mailer = MailerConfig(host="smtp.test.com")
        session = make_session(
            events=[MailArrived(1)],
            search_results=[42],
            fetch_events=make_message(1, 42, text="You saved $12.34 today."),
        )
        watcher = SavingsWatcher(e2e_config, loaded.hooks, plugin=loaded.module, session=session)

        with patch.object(Mailer, "_send_sync") as mock_send:
            assert await watcher.run() == 0

        assert loaded.module.mailer is watcher.mailer
        mock_send.assert_called_once()
        message, to_addrs = mock_send.call_args.args
        assert to_addrs == ["me@example.com"]
        assert message["Subject"] == "Saved"
        assert watcher.mailer.pending == 0

    @pytest.mark.asyncio
    async def test_debug_setting_sets_root_level(self, e2e_config, make_session):
        e2e_config.debug = True
        assert await SavingsWatcher(e2e_config, session=make_session()).run() == 0
        assert logging.getLogger().level == logging.DEBUG
