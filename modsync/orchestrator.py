"""
主协调器

InstallOrchestrator 按状态机驱动一次安装运行：
获取清单 → 版本检查 → 功能解析 → 等待确认 → 启动器解析 → 下载 → 写入配置 → 完成。

表现层只通过命令（start_install / set_feature / select_launcher /
confirm_apply / cancel_current_run）提交意图，并通过快照与事件读取结果。
"""

import asyncio
import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from loguru import logger

from modsync.download import (
    Downloadable,
    DownloadManager,
    FetchContext,
    InstallLedger,
    plan,
)
from modsync.events import Event, EventBus, EventType
from modsync.exceptions import (
    ConfigPersistenceError,
    InvalidStateError,
    LauncherDirectoryUnwritableError,
    LauncherError,
    ModSyncError,
    NoLauncherFoundError,
    RunCancelledError,
    RunInProgressError,
)
from modsync.launchers import (
    InstanceRef,
    LauncherAdapter,
    choice_for,
    parse_choice,
    resolve_launcher,
)
from modsync.models import (
    Config,
    InstallerProfile,
    ItemOutcome,
    ItemStatus,
    LauncherChoice,
    Manifest,
    RemovalPolicy,
    RunReport,
    RunState,
    Settings,
    SourceRecord,
)
from modsync.services import ConfigStore, FeatureResolver, HttpClient, VersionGate
from modsync.services.api_client import manifest_url


# 允许 confirm_apply 的状态
_APPLY_STATES = (RunState.AWAITING_CONFIRMATION, RunState.AWAITING_LAUNCHER)


@dataclass
class _Session:
    """单个清单来源的会话状态，仅由协调器修改"""

    source: str
    branch: str
    state: RunState = RunState.IDLE
    manifest: Optional[Manifest] = None
    resolver: Optional[FeatureResolver] = None
    launcher_choice: Optional[LauncherChoice] = None
    report: Optional[RunReport] = None
    task: Optional[asyncio.Future] = None
    busy: bool = False
    cancel_requested: bool = False


class InstallOrchestrator:
    """安装协调器"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_store: Optional[ConfigStore] = None,
        client: Any = None,
        bus: Optional[EventBus] = None,
    ):
        self.settings = settings or Settings()
        self.config_store = config_store or ConfigStore(self.settings.config_path)
        self.client = client or HttpClient(self.settings)
        self._owns_client = client is None
        self.bus = bus or EventBus()
        self.gate = VersionGate()

        self._config: Config = self.config_store.load()
        self._config_lock = asyncio.Lock()
        self._sessions: Dict[str, _Session] = {}
        self._current: Optional[str] = None
        self._pending_events: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # 快照

    @property
    def state(self) -> RunState:
        session = self._sessions.get(self._current) if self._current else None
        return session.state if session else RunState.IDLE

    @property
    def profile(self) -> Optional[InstallerProfile]:
        session = self._sessions.get(self._current) if self._current else None
        if session is None or session.manifest is None:
            return None
        return self._build_profile(session)

    @property
    def config(self) -> Config:
        return copy.deepcopy(self._config)

    @property
    def report(self) -> Optional[RunReport]:
        session = self._sessions.get(self._current) if self._current else None
        return copy.deepcopy(session.report) if session and session.report else None

    # ------------------------------------------------------------------
    # 命令

    async def start_install(
        self,
        source: str,
        branch: str,
        launcher_choice: Union[str, LauncherChoice, None] = None,
    ) -> InstallerProfile:
        """
        获取并解析清单，返回 InstallerProfile

        Raises:
            RunInProgressError: 该来源已有运行中的任务
            MalformedManifestError / UnsupportedManifestVersionError: 致命错误
            RunCancelledError: 运行被取消
        """
        existing = self._sessions.get(source)
        if existing and existing.busy:
            raise RunInProgressError(
                f"来源 '{source}' 已有运行中的任务", context={"source": source}
            )

        session = _Session(source=source, branch=branch)
        if launcher_choice is not None:
            session.launcher_choice = self._coerce_choice(launcher_choice)
        self._sessions[source] = session
        self._current = source

        profile = await self._guarded(session, self._prepare(session))
        if profile is None:
            raise RunCancelledError("运行已取消", context={"source": source})
        return profile

    def set_feature(
        self, feature_id: str, enabled: bool, source: Optional[str] = None
    ) -> InstallerProfile:
        """切换功能，返回更新后的 InstallerProfile"""
        session = self._session(source)
        if session.busy or session.state not in _APPLY_STATES:
            raise InvalidStateError(
                f"当前状态 {session.state.value} 不允许修改功能",
                context={"state": session.state.value},
            )
        session.resolver.toggle(feature_id, enabled)
        profile = self._build_profile(session)
        self._emit_soon(
            Event(EventType.PROFILE_READY, session.source, {"profile": profile})
        )
        return profile

    def select_launcher(
        self, choice: Union[str, LauncherChoice], source: Optional[str] = None
    ) -> LauncherChoice:
        """选择启动器（包括手动输入路径），之后可再次 confirm_apply"""
        session = self._session(source)
        if session.busy:
            raise RunInProgressError(
                f"来源 '{session.source}' 已有运行中的任务",
                context={"source": session.source},
            )
        session.launcher_choice = self._coerce_choice(choice)
        logger.info(f"[启动器] 已选择 {session.launcher_choice.name}")
        return session.launcher_choice

    async def confirm_apply(self, source: Optional[str] = None) -> RunReport:
        """
        应用当前功能选择

        未找到启动器时返回状态为 AWAITING_LAUNCHER 的报告；
        取消时返回状态为 CANCELLED 的报告，Config 保持不变。

        Raises:
            RunInProgressError: 该来源已有运行中的任务
            InvalidStateError: 尚未完成 start_install
        """
        session = self._session(source)
        if session.busy:
            raise RunInProgressError(
                f"来源 '{session.source}' 已有运行中的任务",
                context={"source": session.source},
            )
        if session.state not in _APPLY_STATES:
            raise InvalidStateError(
                f"当前状态 {session.state.value} 不允许应用",
                context={"state": session.state.value},
            )

        session.report = RunReport(
            source=session.source,
            branch=session.branch,
            modpack_version=session.manifest.modpack_version,
        )
        result = await self._guarded(session, self._apply(session))
        return result if result is not None else session.report

    def cancel_current_run(self, source: Optional[str] = None) -> bool:
        """
        取消运行

        Returns:
            是否有可取消的运行
        """
        source = source or self._current
        session = self._sessions.get(source) if source else None
        if session is None:
            return False

        if session.task is not None and not session.task.done():
            session.cancel_requested = True
            session.task.cancel()
            logger.warning(f"[取消] 正在取消 '{session.source}' 的运行...")
            return True

        if session.state in _APPLY_STATES:
            session.state = RunState.CANCELLED
            if session.report:
                session.report.state = RunState.CANCELLED
            self._emit_soon(Event(EventType.CANCELLED, session.source, {}))
            logger.warning(f"[取消] '{session.source}' 已取消")
            return True
        return False

    async def run(
        self,
        source: str,
        branch: str,
        launcher_choice: Union[str, LauncherChoice, None] = None,
        toggles: Iterable[Tuple[str, bool]] = (),
    ) -> RunReport:
        """一次完成 start_install → set_feature → confirm_apply"""
        await self.start_install(source, branch, launcher_choice)
        for feature_id, enabled in toggles:
            self.set_feature(feature_id, enabled, source=source)
        return await self.confirm_apply(source)

    async def close(self):
        if self._pending_events:
            await asyncio.gather(*self._pending_events, return_exceptions=True)
        if self._owns_client:
            await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------------
    # 状态机步骤

    async def _prepare(self, session: _Session) -> InstallerProfile:
        await self._transition(session, RunState.MANIFEST_FETCHING)
        data = await self.client.fetch_manifest(session.source, session.branch)

        # manifest_version 是版本检查前唯一被信任的字段
        await self._transition(session, RunState.VERSION_CHECKING)
        self.gate.check(Manifest.read_version(data))
        manifest = Manifest.from_dict(data)
        logger.info(
            f"[清单] {manifest.name} {manifest.modpack_version} "
            f"(清单版本 {manifest.manifest_version})"
        )

        await self._transition(session, RunState.FEATURE_RESOLVING)
        record = self._config.record_for(session.source)
        previous = (
            record.enabled_features
            if record is not None and record.installed_version is not None
            else None
        )
        session.manifest = manifest
        session.resolver = FeatureResolver(manifest.features, previous)

        profile = self._build_profile(session)
        await self._transition(session, RunState.AWAITING_CONFIRMATION)
        await self.bus.emit(
            Event(EventType.PROFILE_READY, session.source, {"profile": profile})
        )
        return profile

    async def _apply(self, session: _Session) -> RunReport:
        manifest = session.manifest
        report = session.report

        await self._transition(session, RunState.LAUNCHER_RESOLVING)
        choice = session.launcher_choice or self._config.launcher
        handle = resolve_launcher(choice, self.settings)
        if handle is None:
            error = NoLauncherFoundError(
                "未找到受支持的启动器，请选择启动器或手动输入路径",
                context={"choice": choice.to_dict() if choice else None},
            )
            logger.warning(f"[启动器] {error}")
            report.warnings.append(str(error))
            report.state = RunState.AWAITING_LAUNCHER
            await self._transition(session, RunState.AWAITING_LAUNCHER)
            await self.bus.emit(Event(EventType.NO_LAUNCHER, session.source, error.to_dict()))
            return report

        adapter = LauncherAdapter(handle.spec)
        instance = adapter.ensure_instance(handle, manifest)
        ledger = InstallLedger.load(adapter.instance_root(instance))
        logger.info(f"[实例] {instance.describe()}")

        await self._transition(session, RunState.DOWNLOADING)
        selected, disabled = plan(manifest, session.resolver.is_enabled)
        context = FetchContext(
            client=self.client,
            settings=self.settings,
            manifest=manifest,
            source=session.source,
            branch=session.branch,
            instance=instance,
        )

        async def on_progress(outcome: ItemOutcome):
            await self.bus.emit(
                Event(EventType.PROGRESS, session.source, outcome.to_dict())
            )

        manager = DownloadManager(context, ledger, self.settings, on_progress)
        for item in selected:
            await manager.enqueue(item)

        try:
            outcomes = await manager.run()
        except asyncio.CancelledError:
            # 已完整放置的文件仍然记录，下次运行可以跳过
            self._save_ledger(ledger)
            report.outcomes.extend(manager.outcomes.values())
            raise

        report.outcomes.extend(outcomes[item.key] for item in selected if item.key in outcomes)
        for outcome in self._reconcile(ledger, selected, disabled):
            report.outcomes.append(outcome)
            await on_progress(outcome)

        stats = manager.get_stats()
        logger.success(
            f"下载完成: {stats.completed} 成功, {stats.failed} 失败, {stats.skipped} 跳过"
        )

        await self._transition(session, RunState.PROFILE_WRITING)
        icon = await self._fetch_icon(session, adapter, instance)
        adapter.write_profile(instance, manifest.loader, manifest.name, icon=icon)
        ledger.modpack_version = manifest.modpack_version
        self._save_ledger(ledger)
        await self._persist(session, choice_for(handle), report)

        report.state = RunState.DONE
        await self._transition(session, RunState.DONE)
        await self.bus.emit(Event(EventType.DONE, session.source, report.to_dict()))
        if report.partial:
            logger.warning(f"[完成] 部分条目失败: {len(report.failed)} 项")
        else:
            logger.success(f"[完成] {manifest.name} {manifest.modpack_version} 安装完成")
        return report

    def _reconcile(
        self,
        ledger: InstallLedger,
        selected: List[Downloadable],
        disabled: List[Downloadable],
    ) -> List[ItemOutcome]:
        """处理未选中的条目与清单中已删除的条目"""
        sweep = self.settings.removal_policy is RemovalPolicy.SWEEP
        outcomes = []

        for item in disabled:
            entry = ledger.get(item.key)
            status = ItemStatus.SKIPPED_FEATURE
            if entry is not None and sweep:
                ledger.remove_files(entry)
                ledger.forget(item.key)
                status = ItemStatus.REMOVED
                logger.info(f"[清理] 已移除禁用功能的条目 '{item.name}'")
            outcomes.append(
                ItemOutcome(key=item.key, name=item.name, kind=item.kind.value, status=status)
            )

        known = {item.key for item in selected} | {item.key for item in disabled}
        for key in [k for k in ledger.entries if k not in known]:
            kind, _, name = key.partition(":")
            status = ItemStatus.SKIPPED_FEATURE
            if sweep:
                ledger.remove_files(ledger.forget(key))
                status = ItemStatus.REMOVED
                logger.info(f"[清理] 已移除清单中删除的条目 '{key}'")
            else:
                logger.info(f"[跳过] 清单已删除 '{key}'，按策略保留")
            outcomes.append(
                ItemOutcome(key=key, name=name or key, kind=kind, status=status)
            )
        return outcomes

    def _save_ledger(self, ledger: InstallLedger) -> None:
        try:
            ledger.save()
        except OSError as e:
            raise LauncherDirectoryUnwritableError(
                f"写入安装记录失败: {e}", context={"path": str(ledger.path)}
            )

    async def _fetch_icon(
        self, session: _Session, adapter: LauncherAdapter, instance: InstanceRef
    ) -> Optional[bytes]:
        """清单声明 icon 时获取仓库中的 icon.png；已设置且无更新时跳过"""
        manifest = session.manifest
        if not manifest.icon:
            return None
        if adapter.has_icon(instance) and not self._build_profile(session).update_available:
            return None
        url = manifest_url(self.settings.raw_root, session.source, session.branch, "icon.png")
        try:
            return await self.client.get_bytes(url)
        except ModSyncError as e:
            logger.warning(f"[图标] 获取整合包图标失败: {e}")
            session.report.warnings.append(str(e))
            return None

    async def _persist(
        self, session: _Session, launcher: LauncherChoice, report: RunReport
    ) -> None:
        """
        写入 Config；失败时降级为警告

        新记录先写入副本，保存成功后才替换内存中的 Config。
        """
        async with self._config_lock:
            updated = copy.deepcopy(self._config)
            record = updated.sources.setdefault(session.source, SourceRecord())
            record.installed_version = session.manifest.modpack_version
            record.enabled_features = set(session.resolver.effective())
            record.modify_count = session.resolver.modify_count
            record.branch = session.branch
            updated.launcher = launcher
            updated.first_launch = False
            try:
                await self.config_store.save(
                    updated,
                    retries=self.settings.max_retries,
                    delay=self.settings.retry_delay,
                )
            except ConfigPersistenceError as e:
                logger.warning(f"[配置] {e}")
                report.warnings.append(str(e))
                return
            self._config = updated

    # ------------------------------------------------------------------
    # 内部工具

    async def _guarded(self, session: _Session, coro) -> Any:
        """在可取消的任务中执行一个步骤，统一处理取消与致命错误"""
        session.busy = True
        session.cancel_requested = False
        session.task = asyncio.ensure_future(coro)
        try:
            return await session.task
        except asyncio.CancelledError:
            session.state = RunState.CANCELLED
            if session.report:
                session.report.state = RunState.CANCELLED
            if not session.cancel_requested:
                raise
            logger.warning(f"[取消] '{session.source}' 已取消")
            await self.bus.emit(Event(EventType.CANCELLED, session.source, {}))
            return None
        except Exception as e:
            await self._fail(session, e)
            raise
        finally:
            session.busy = False
            session.task = None

    async def _fail(self, session: _Session, error: Exception) -> None:
        if isinstance(error, ModSyncError):
            detail = error.to_dict()
        else:
            detail = ModSyncError(str(error), context={"type": type(error).__name__}).to_dict()
        logger.error(f"[错误] 运行失败: {error}")
        session.state = RunState.ERROR
        if session.report:
            session.report.state = RunState.ERROR
        await self.bus.emit(Event(EventType.STATE_CHANGED, session.source, {"state": RunState.ERROR.value}))
        await self.bus.emit(Event(EventType.ERROR, session.source, detail))

    async def _transition(self, session: _Session, state: RunState) -> None:
        previous = session.state
        session.state = state
        logger.debug(f"[状态] {session.source}: {previous.value} -> {state.value}")
        await self.bus.emit(
            Event(
                EventType.STATE_CHANGED,
                session.source,
                {"state": state.value, "previous": previous.value},
            )
        )

    def _emit_soon(self, event: Event) -> None:
        """同步命令中发出事件；没有运行中的事件循环时忽略"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.bus.emit(event))
        self._pending_events.add(task)
        task.add_done_callback(self._pending_events.discard)

    def _session(self, source: Optional[str]) -> _Session:
        source = source or self._current
        session = self._sessions.get(source) if source else None
        if session is None or session.manifest is None:
            raise InvalidStateError(
                "尚未获取清单，请先调用 start_install", context={"source": source}
            )
        return session

    def _coerce_choice(self, choice: Union[str, LauncherChoice]) -> LauncherChoice:
        if isinstance(choice, LauncherChoice):
            return choice
        try:
            return parse_choice(choice, self.settings)
        except ValueError as e:
            raise LauncherError(str(e), context={"choice": choice})

    def _build_profile(self, session: _Session) -> InstallerProfile:
        manifest = session.manifest
        record = self._config.record_for(session.source)
        installed = record is not None and record.installed_version is not None
        update_available = installed and (
            record.installed_version != manifest.modpack_version
            or record.branch not in (None, session.branch)
        )
        return InstallerProfile(
            manifest=manifest,
            source=session.source,
            branch=session.branch,
            enabled_features=frozenset(session.resolver.effective()),
            installed=installed,
            update_available=update_available,
            modified=session.resolver.modified,
            modify_count=session.resolver.modify_count,
            launcher=session.launcher_choice or self._config.launcher,
        )
