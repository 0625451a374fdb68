import threading
import pytest
from datetime import timedelta

from autorizaciones.models.enums import (
    EstadoWorkflow, TipoEscalamiento, AccionAprobacion, PrioridadNotificacion, NivelAprobacion
)
from autorizaciones.models import EventoEscalamiento, Usuario
from autorizaciones.services.escalation_service import EscalationScheduler, EscalationRunner
from autorizaciones.services.notification_service import NotificationService
from conftest import T0


def horas(n):
    return T0 + timedelta(hours=n)


@pytest.fixture
def scheduler(db):
    return EscalationScheduler(db)


@pytest.fixture
def pago(crear_workflow):
    """Pago de 30000: regla gerente, H = 24h"""
    return crear_workflow(monto="30000")


class TestBuckets:

    @pytest.mark.parametrize("transcurridas,esperado", [
        (0, None),
        (23.9, None),
        (24, TipoEscalamiento.REMINDER),
        (47, TipoEscalamiento.REMINDER),
        (48, TipoEscalamiento.ESCALATION),
        (72, TipoEscalamiento.FINAL_ESCALATION),
        (500, TipoEscalamiento.FINAL_ESCALATION),
    ])
    def test_highest_threshold_reached(self, transcurridas, esperado):
        assert EscalationScheduler.bucket_for(24, transcurridas) == esperado


class TestScan:

    def test_nothing_before_first_threshold(self, scheduler, pago):
        assert scheduler.scan(horas(23)) == []

    def test_reminder_at_threshold_keeps_status(self, scheduler, pago):
        eventos = scheduler.scan(horas(24))

        assert len(eventos) == 1
        assert eventos[0].tipo == TipoEscalamiento.REMINDER
        assert eventos[0].horas_transcurridas == 24
        assert pago.estado == EstadoWorkflow.PENDIENTE
        assert pago.escalado_en is None

    def test_repeated_scans_in_same_bucket_do_not_duplicate(self, scheduler, pago):
        scheduler.scan(horas(24))
        assert scheduler.scan(horas(25)) == []
        assert scheduler.scan(horas(47)) == []
        assert scheduler.get_escalation_stats().total == 1

    def test_escalation_flips_status(self, scheduler, pago):
        scheduler.scan(horas(24))
        eventos = scheduler.scan(horas(48))

        assert [e.tipo for e in eventos] == [TipoEscalamiento.ESCALATION]
        assert pago.estado == EstadoWorkflow.ESCALADO
        assert pago.escalado_en == horas(48)
        assert scheduler.scan(horas(50)) == []

    def test_final_escalation(self, scheduler, pago):
        scheduler.scan(horas(24))
        scheduler.scan(horas(48))
        eventos = scheduler.scan(horas(72))

        assert [e.tipo for e in eventos] == [TipoEscalamiento.FINAL_ESCALATION]
        assert pago.estado == EstadoWorkflow.ESCALADO
        assert pago.escalado_en == horas(48)

    def test_only_highest_bucket_is_emitted_when_scan_runs_late(self, scheduler, pago):
        eventos = scheduler.scan(horas(80))
        assert [e.tipo for e in eventos] == [TipoEscalamiento.FINAL_ESCALATION]
        assert scheduler.scan(horas(81)) == []
        assert pago.estado == EstadoWorkflow.ESCALADO

    def test_terminal_workflows_are_skipped(self, scheduler, pago, ledger, usuarios):
        ledger.record_decision(pago.id_workflow, usuarios["gerente"].id_usuario, AccionAprobacion.REJECT, now=horas(1))
        assert scheduler.scan(horas(100)) == []

    def test_escalated_workflow_can_still_be_approved(self, scheduler, pago, ledger, usuarios):
        scheduler.scan(horas(48))
        ledger.record_decision(pago.id_workflow, usuarios["solicitante"].id_usuario, AccionAprobacion.APPROVE, now=horas(49))
        resultado = ledger.record_decision(pago.id_workflow, usuarios["supervisor"].id_usuario, AccionAprobacion.APPROVE, now=horas(50))
        assert resultado.status == EstadoWorkflow.ESCALADO

        resultado = ledger.record_decision(pago.id_workflow, usuarios["gerente"].id_usuario, AccionAprobacion.APPROVE, now=horas(51))
        assert resultado.status == EstadoWorkflow.APROBADO

    def test_cancelled_scan_emits_nothing(self, scheduler, pago):
        cancel = threading.Event()
        cancel.set()
        assert scheduler.scan(horas(100), cancel_event=cancel) == []

    def test_failure_on_one_workflow_does_not_stop_the_scan(self, scheduler, crear_workflow, monkeypatch):
        roto = crear_workflow(monto="1000")
        sano = crear_workflow(monto="2000")
        original = scheduler._process_workflow

        def _process(workflow_id, now):
            if workflow_id == roto.id_workflow:
                raise RuntimeError("fallo simulado")
            return original(workflow_id, now)
        monkeypatch.setattr(scheduler, "_process_workflow", _process)

        eventos = scheduler.scan(horas(200))
        assert [e.id_workflow for e in eventos] == [sano.id_workflow]


class TestEscalationNotifications:

    def test_reminder_goes_to_current_named_approver(self, db, scheduler, pago, usuarios):
        evento = scheduler.scan(horas(24))[0]
        assert evento.id_usuario_destino == usuarios["solicitante"].id_usuario

        notificaciones = NotificationService(db).get_notifications(usuarios["solicitante"].id_usuario)
        assert notificaciones[0].tipo == "reminder"
        assert notificaciones[0].prioridad == PrioridadNotificacion.MEDIA

    def test_escalation_goes_above_current_level(self, db, scheduler, pago, ledger, usuarios):
        ledger.record_decision(pago.id_workflow, usuarios["solicitante"].id_usuario, AccionAprobacion.APPROVE, now=horas(1))
        evento = scheduler.scan(horas(48))[0]

        destino = db.get(Usuario, evento.id_usuario_destino)
        assert destino.nivel_aprobacion.rank > NivelAprobacion.SUPERVISOR.rank

        notificacion = NotificationService(db).get_notifications(destino.id_usuario)[0]
        assert notificacion.prioridad == PrioridadNotificacion.ALTA

    def test_final_escalation_goes_to_executive(self, db, scheduler, pago, usuarios):
        evento = scheduler.scan(horas(72))[0]
        destino = db.get(Usuario, evento.id_usuario_destino)
        assert destino.nivel_aprobacion == NivelAprobacion.EJECUTIVO

        notificacion = NotificationService(db).get_notifications(destino.id_usuario, unread_only=True)[0]
        assert notificacion.prioridad == PrioridadNotificacion.CRITICA


class TestStatsAndRisk:

    def test_stats_by_type(self, scheduler, pago, crear_workflow):
        crear_workflow(monto="1000", now=horas(30))
        scheduler.scan(horas(24))
        scheduler.scan(horas(48))

        stats = scheduler.get_escalation_stats()
        conteos = {c.type: c.count for c in stats.by_type}
        assert stats.total == 3
        assert conteos == {
            TipoEscalamiento.REMINDER: 2,
            TipoEscalamiento.ESCALATION: 1,
            TipoEscalamiento.FINAL_ESCALATION: 0,
        }

    def test_empty_stats(self, scheduler):
        stats = scheduler.get_escalation_stats()
        assert stats.total == 0
        assert len(stats.by_type) == 3

    def test_workflow_inside_risk_window(self, scheduler, pago):
        en_riesgo = scheduler.get_workflows_at_risk(now=horas(20), risk_window_hours=6)

        assert len(en_riesgo) == 1
        assert en_riesgo[0].id == pago.id_workflow
        assert en_riesgo[0].next_escalation_type == TipoEscalamiento.REMINDER
        assert en_riesgo[0].hours_to_next_escalation == 4.0
        assert en_riesgo[0].escalation_hours == 24

    def test_workflow_outside_risk_window(self, scheduler, pago):
        assert scheduler.get_workflows_at_risk(now=horas(10), risk_window_hours=6) == []

    def test_next_threshold_follows_emitted_events(self, scheduler, pago):
        scheduler.scan(horas(24))
        assert scheduler.get_workflows_at_risk(now=horas(30), risk_window_hours=6) == []

        en_riesgo = scheduler.get_workflows_at_risk(now=horas(43), risk_window_hours=6)
        assert en_riesgo[0].next_escalation_type == TipoEscalamiento.ESCALATION
        assert en_riesgo[0].hours_to_next_escalation == 5.0

    def test_fully_escalated_workflow_is_not_at_risk(self, scheduler, pago):
        scheduler.scan(horas(80))
        assert scheduler.get_workflows_at_risk(now=horas(90), risk_window_hours=6) == []


class TestEscalationRunner:

    def test_disabled_when_interval_is_zero(self, session_factory):
        runner = EscalationRunner(session_factory, interval_s=0)
        runner.start()
        assert runner.enabled is False
        assert runner._thread is None

    def test_run_once_uses_its_own_session(self, db, session_factory, pago):
        runner = EscalationRunner(session_factory, interval_s=0)
        # el workflow se creó en T0, hace más de 3H respecto de la hora real
        assert runner.run_once() == 1

        db.expire_all()
        eventos = db.query(EventoEscalamiento).all()
        assert [e.tipo for e in eventos] == [TipoEscalamiento.FINAL_ESCALATION]

    def test_start_and_stop(self, session_factory):
        runner = EscalationRunner(session_factory, interval_s=3600)
        runner.start()
        assert runner._thread.is_alive()
        runner.stop()
        assert not runner._thread.is_alive()
