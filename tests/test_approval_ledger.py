import pytest
from datetime import timedelta
from sqlalchemy.orm.exc import StaleDataError

from autorizaciones.core.exceptions import (
    Unauthorized, CannotReverse, InvalidTransition, ConcurrencyException, ResourceNotFoundException
)
from autorizaciones.models.enums import (
    TipoWorkflow, EstadoWorkflow, EstadoPaso, AccionAprobacion
)
from autorizaciones.schemas.authorization import DelegationCreate
from autorizaciones.services.delegation_service import DelegationService
from autorizaciones.services.notification_service import NotificationService
from conftest import T0

APPROVE = AccionAprobacion.APPROVE
REJECT = AccionAprobacion.REJECT
REVERSE = AccionAprobacion.REVERSE


def _decidir(ledger, workflow, usuario, accion, horas, comments=None):
    return ledger.record_decision(
        workflow.id_workflow, usuario.id_usuario, accion, comments=comments, now=T0 + timedelta(hours=horas)
    )


@pytest.fixture
def dos_firmados(capital_call, ledger, usuarios):
    """Capital call con los pasos 1 y 2 firmados"""
    _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
    _decidir(ledger, capital_call, usuarios["ana"], APPROVE, 2)
    return capital_call


class TestSequentialChain:

    def test_two_signed_steps_point_to_third_approver(self, dos_firmados, usuarios):
        assert dos_firmados.estado == EstadoWorkflow.PENDIENTE
        assert dos_firmados.paso_actual == 3
        assert dos_firmados.id_aprobador_actual == usuarios["juan"].id_usuario
        assert [p.estado for p in dos_firmados.pasos] == [
            EstadoPaso.FIRMADO, EstadoPaso.FIRMADO, EstadoPaso.PENDIENTE, EstadoPaso.PENDIENTE
        ]

    def test_reversing_last_signed_step_succeeds(self, dos_firmados, ledger, usuarios):
        resultado = _decidir(ledger, dos_firmados, usuarios["ana"], REVERSE, 3)

        assert resultado.success is True
        assert resultado.status == EstadoWorkflow.PENDIENTE
        assert resultado.current_step == 2
        assert resultado.current_approver == usuarios["ana"].id_usuario
        assert dos_firmados.pasos[1].estado == EstadoPaso.PENDIENTE
        assert dos_firmados.pasos[2].estado == EstadoPaso.PENDIENTE

    def test_reversing_step_followed_by_signoff_fails(self, dos_firmados, ledger, usuarios):
        version = dos_firmados.version
        with pytest.raises(CannotReverse) as exc_info:
            _decidir(ledger, dos_firmados, usuarios["yoshimitsu"], REVERSE, 3)

        assert exc_info.value.status_code == 409
        assert dos_firmados.version == version
        assert dos_firmados.paso_actual == 3
        assert ledger.get_user_approval(dos_firmados.id_workflow, usuarios["yoshimitsu"].id_usuario).accion == APPROVE

    def test_changing_decision_after_later_signoff_fails(self, dos_firmados, ledger, usuarios):
        with pytest.raises(CannotReverse):
            _decidir(ledger, dos_firmados, usuarios["yoshimitsu"], REJECT, 3)
        assert dos_firmados.estado == EstadoWorkflow.PENDIENTE

    def test_approve_then_reverse_restores_previous_state(self, capital_call, ledger, usuarios):
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        resultado = _decidir(ledger, capital_call, usuarios["yoshimitsu"], REVERSE, 2)

        assert resultado.status == EstadoWorkflow.PENDIENTE
        assert capital_call.paso_actual == 1
        assert capital_call.id_aprobador_actual == usuarios["yoshimitsu"].id_usuario
        assert all(p.estado == EstadoPaso.PENDIENTE for p in capital_call.pasos)

    def test_only_current_step_is_actionable(self, capital_call, ledger, usuarios):
        with pytest.raises(Unauthorized) as exc_info:
            _decidir(ledger, capital_call, usuarios["juan"], APPROVE, 1)
        assert exc_info.value.status_code == 403
        assert list(ledger.get_approvals(capital_call.id_workflow)) == []

    def test_user_outside_chain_is_unauthorized(self, capital_call, ledger, usuarios):
        with pytest.raises(Unauthorized):
            _decidir(ledger, capital_call, usuarios["ejecutivo"], APPROVE, 1)

    def test_full_chain_approves_and_last_signer_can_reverse(self, dos_firmados, ledger, usuarios):
        _decidir(ledger, dos_firmados, usuarios["juan"], APPROVE, 3)
        resultado = _decidir(ledger, dos_firmados, usuarios["javier"], APPROVE, 4)
        assert resultado.status == EstadoWorkflow.APROBADO
        assert dos_firmados.resuelto_en == T0 + timedelta(hours=4)

        with pytest.raises(CannotReverse):
            _decidir(ledger, dos_firmados, usuarios["juan"], REVERSE, 5)

        resultado = _decidir(ledger, dos_firmados, usuarios["javier"], REVERSE, 5)
        assert resultado.previous_status == EstadoWorkflow.APROBADO
        assert resultado.status == EstadoWorkflow.PENDIENTE
        assert resultado.current_approver == usuarios["javier"].id_usuario
        assert dos_firmados.resuelto_en is None


class TestRejection:

    def test_reject_in_sequential_chain(self, dos_firmados, ledger, usuarios):
        resultado = _decidir(ledger, dos_firmados, usuarios["juan"], REJECT, 3, comments="Falta soporte")
        assert resultado.status == EstadoWorkflow.RECHAZADO
        assert resultado.decision.comments == "Falta soporte"
        assert dos_firmados.paso_actual is None

    def test_reject_in_parallel_chain(self, crear_workflow, ledger, usuarios):
        workflow = crear_workflow(monto="30000")
        _decidir(ledger, workflow, usuarios["solicitante"], APPROVE, 1)
        resultado = _decidir(ledger, workflow, usuarios["supervisor"], REJECT, 2)
        assert resultado.status == EstadoWorkflow.RECHAZADO

    def test_terminal_workflow_refuses_new_decisions(self, dos_firmados, ledger, usuarios):
        _decidir(ledger, dos_firmados, usuarios["juan"], REJECT, 3)
        with pytest.raises(InvalidTransition):
            _decidir(ledger, dos_firmados, usuarios["javier"], APPROVE, 4)

    def test_supersede_keeps_one_active_decision_per_user(self, capital_call, ledger, usuarios):
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], REJECT, 2)

        activas = list(ledger.get_approvals(capital_call.id_workflow))
        assert len(activas) == 1
        assert activas[0].accion == REJECT
        assert capital_call.estado == EstadoWorkflow.RECHAZADO
        assert [h.accion for h in ledger.get_history(capital_call.id_workflow)] == [APPROVE, REJECT]

    def test_reverse_without_active_decision(self, capital_call, ledger, usuarios):
        with pytest.raises(InvalidTransition):
            _decidir(ledger, capital_call, usuarios["yoshimitsu"], REVERSE, 1)

    def test_user_may_decide_again_after_reversing(self, capital_call, ledger, usuarios):
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], REVERSE, 2)
        resultado = _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 3)
        assert resultado.current_step == 2
        assert len(ledger.get_history(capital_call.id_workflow)) == 3


class TestLedgerReads:

    def test_approvals_are_ordered_and_restartable(self, dos_firmados, ledger, usuarios):
        decisiones = ledger.get_approvals(dos_firmados.id_workflow)
        primera = [d.id_usuario for d in decisiones]
        segunda = [d.id_usuario for d in decisiones]
        assert primera == segunda == [usuarios["yoshimitsu"].id_usuario, usuarios["ana"].id_usuario]

    def test_user_approval_lookup(self, dos_firmados, ledger, usuarios):
        decision = ledger.get_user_approval(dos_firmados.id_workflow, usuarios["ana"].id_usuario)
        assert decision.nombre_usuario == "Ana Cecilia Campos"
        assert decision.numero_paso == 2
        assert ledger.get_user_approval(dos_firmados.id_workflow, usuarios["juan"].id_usuario) is None

    def test_history_records_state_transitions(self, dos_firmados, ledger):
        historial = ledger.get_history(dos_firmados.id_workflow)
        assert [(h.estado_anterior, h.estado_nuevo) for h in historial] == [
            (EstadoWorkflow.PENDIENTE, EstadoWorkflow.PENDIENTE),
            (EstadoWorkflow.PENDIENTE, EstadoWorkflow.PENDIENTE),
        ]

    def test_unknown_workflow(self, ledger, usuarios):
        with pytest.raises(ResourceNotFoundException):
            ledger.record_decision(999, usuarios["ana"].id_usuario, APPROVE, now=T0)
        with pytest.raises(ResourceNotFoundException):
            ledger.get_approvals(999)

    def test_version_increments_on_each_decision(self, capital_call, ledger, usuarios):
        assert capital_call.version == 1
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        assert capital_call.version == 2


class TestAvailableActions:

    def test_current_approver_can_approve_or_reject(self, capital_call, ledger, usuarios):
        acciones = ledger.get_available_actions(capital_call.id_workflow, usuarios["yoshimitsu"].id_usuario, now=T0)
        assert acciones.available_actions == [APPROVE, REJECT]
        assert acciones.step_index == 1

    def test_waiting_approver_has_no_actions(self, capital_call, ledger, usuarios):
        acciones = ledger.get_available_actions(capital_call.id_workflow, usuarios["juan"].id_usuario, now=T0)
        assert acciones.available_actions == []
        assert acciones.step_index is None

    def test_signer_can_reverse_until_next_signoff(self, capital_call, ledger, usuarios):
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        acciones = ledger.get_available_actions(capital_call.id_workflow, usuarios["yoshimitsu"].id_usuario, now=T0)
        assert REVERSE in acciones.available_actions

        _decidir(ledger, capital_call, usuarios["ana"], APPROVE, 2)
        acciones = ledger.get_available_actions(capital_call.id_workflow, usuarios["yoshimitsu"].id_usuario, now=T0)
        assert acciones.available_actions == []


class TestDelegatedAuthority:

    @pytest.fixture
    def tres_firmados(self, dos_firmados, ledger, usuarios):
        _decidir(ledger, dos_firmados, usuarios["juan"], APPROVE, 3)
        return dos_firmados

    def _delegar(self, db, usuarios, **overrides):
        data = dict(
            delegator_id=usuarios["javier"].id_usuario,
            delegate_id=usuarios["director"].id_usuario,
            workflow_types=[TipoWorkflow.CAPITAL_CALL],
            valid_from=T0 - timedelta(days=1),
            valid_until=T0 + timedelta(days=7),
            reason="Vacaciones"
        )
        data.update(overrides)
        return DelegationService(db).create_delegation(DelegationCreate(**data))

    def test_delegate_signs_named_step(self, db, tres_firmados, ledger, usuarios):
        self._delegar(db, usuarios)
        resultado = _decidir(ledger, tres_firmados, usuarios["director"], APPROVE, 4)

        assert resultado.status == EstadoWorkflow.APROBADO
        ultimo = ledger.get_history(tres_firmados.id_workflow)[-1]
        assert ultimo.id_usuario == usuarios["director"].id_usuario
        assert ultimo.id_usuario_en_nombre_de == usuarios["javier"].id_usuario

    def test_expired_delegation_grants_nothing(self, db, tres_firmados, ledger, usuarios):
        self._delegar(db, usuarios, valid_from=T0 - timedelta(days=10), valid_until=T0 - timedelta(days=5))
        with pytest.raises(Unauthorized):
            _decidir(ledger, tres_firmados, usuarios["director"], APPROVE, 4)

    def test_delegation_amount_cap(self, db, tres_firmados, ledger, usuarios):
        self._delegar(db, usuarios, max_amount="100000")
        with pytest.raises(Unauthorized):
            _decidir(ledger, tres_firmados, usuarios["director"], APPROVE, 4)

    def test_delegation_for_other_workflow_type(self, db, tres_firmados, ledger, usuarios):
        self._delegar(db, usuarios, workflow_types=[TipoWorkflow.PAGO])
        with pytest.raises(Unauthorized):
            _decidir(ledger, tres_firmados, usuarios["director"], APPROVE, 4)


class TestFailureHandling:

    def test_inactive_user_is_unauthorized(self, db, capital_call, ledger, usuarios):
        usuarios["yoshimitsu"].is_active = False
        db.commit()
        with pytest.raises(Unauthorized):
            _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)

    def test_stale_commit_is_rolled_back_as_conflict(self, db, capital_call, ledger, usuarios, monkeypatch):
        def _stale():
            raise StaleDataError("version mismatch")
        monkeypatch.setattr(db, "commit", _stale)

        with pytest.raises(ConcurrencyException) as exc_info:
            _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        monkeypatch.undo()

        assert exc_info.value.status_code == 409
        assert list(ledger.get_approvals(capital_call.id_workflow)) == []
        assert capital_call.estado == EstadoWorkflow.PENDIENTE
        assert capital_call.pasos[0].estado == EstadoPaso.PENDIENTE


class TestDecisionNotifications:

    def test_next_named_approver_is_notified(self, db, capital_call, ledger, usuarios):
        _decidir(ledger, capital_call, usuarios["yoshimitsu"], APPROVE, 1)
        notificaciones = NotificationService(db).get_notifications(usuarios["ana"].id_usuario)
        assert [n.tipo for n in notificaciones] == ["approval_required"]

    def test_requester_is_notified_on_rejection(self, db, dos_firmados, ledger, usuarios):
        _decidir(ledger, dos_firmados, usuarios["juan"], REJECT, 3)
        notificaciones = NotificationService(db).get_notifications(usuarios["yoshimitsu"].id_usuario)
        assert notificaciones[0].tipo == "workflow_rechazado"
        assert "Capital Call Q3" in notificaciones[0].mensaje
