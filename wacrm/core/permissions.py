"""Team permission registry and resolution.

Every feature of the console is gated by a permission key. Admins always have
every permission. Members get the static per-role default unless their team
membership carries an explicit boolean override for the key.

Precedence: admin role > override > role default
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum


class TeamRole(str, Enum):
    """Role of a user inside an organization."""

    ADMIN = "admin"
    MEMBER = "member"


class PermissionCategory(str, Enum):
    """Permission categories for UI grouping."""

    DASHBOARD = "dashboard"
    INSTANCES = "instances"
    WARMING = "warming"
    INBOX = "inbox"
    FUNNELS = "funnels"
    CALENDAR = "calendar"
    ANALYSIS = "analysis"
    CONTACTS = "contacts"
    LEADS = "leads"
    LISTS = "lists"
    TEMPLATES = "templates"
    CAMPAIGNS = "campaigns"
    CHATBOTS = "chatbots"
    SETTINGS = "settings"
    TEAM = "team"


CATEGORY_LABELS: dict[PermissionCategory, str] = {
    PermissionCategory.DASHBOARD: "Dashboard",
    PermissionCategory.INSTANCES: "Instâncias",
    PermissionCategory.WARMING: "Aquecimento",
    PermissionCategory.INBOX: "Inbox",
    PermissionCategory.FUNNELS: "Funis",
    PermissionCategory.CALENDAR: "Calendário",
    PermissionCategory.ANALYSIS: "Análise",
    PermissionCategory.CONTACTS: "Contatos",
    PermissionCategory.LEADS: "Busca de Leads",
    PermissionCategory.LISTS: "Listas de Transmissão",
    PermissionCategory.TEMPLATES: "Templates",
    PermissionCategory.CAMPAIGNS: "Campanhas",
    PermissionCategory.CHATBOTS: "Chatbots",
    PermissionCategory.SETTINGS: "Configurações",
    PermissionCategory.TEAM: "Equipe",
}


@dataclass(frozen=True)
class PermissionDef:
    """Permission definition with metadata."""

    key: str
    label: str
    description: str
    category: PermissionCategory
    default_for_admin: bool = True
    default_for_member: bool = False


_C = PermissionCategory

# =============================================================================
# Permission Registry
# =============================================================================

PERMISSIONS: tuple[PermissionDef, ...] = (
    PermissionDef("view_dashboard", "Ver Dashboard", "Visualizar dashboard e métricas", _C.DASHBOARD, default_for_member=True),
    PermissionDef("view_instances", "Ver Instâncias", "Visualizar instâncias do WhatsApp", _C.INSTANCES),
    PermissionDef("create_instances", "Criar Instâncias", "Criar novas instâncias", _C.INSTANCES),
    PermissionDef("delete_instances", "Excluir Instâncias", "Excluir instâncias existentes", _C.INSTANCES),
    PermissionDef("connect_instances", "Conectar Instâncias", "Conectar/desconectar instâncias", _C.INSTANCES),
    PermissionDef("view_warming", "Ver Aquecimento", "Visualizar status de aquecimento", _C.WARMING),
    PermissionDef("start_warming", "Iniciar Aquecimento", "Iniciar/pausar aquecimento", _C.WARMING),
    PermissionDef("manage_warming_content", "Gerenciar Conteúdo", "Gerenciar conteúdo de aquecimento", _C.WARMING),
    PermissionDef("manage_warming_contacts", "Gerenciar Contatos", "Gerenciar contatos de aquecimento", _C.WARMING),
    PermissionDef("view_inbox", "Ver Inbox", "Visualizar conversas", _C.INBOX, default_for_member=True),
    PermissionDef("send_messages", "Enviar Mensagens", "Enviar mensagens nas conversas", _C.INBOX, default_for_member=True),
    PermissionDef("use_ai_assistant", "Usar IA", "Usar assistente de IA no inbox", _C.INBOX),
    PermissionDef("close_conversations", "Fechar Conversas", "Fechar/arquivar conversas", _C.INBOX, default_for_member=True),
    PermissionDef("view_funnels", "Ver Funis", "Visualizar funis de vendas", _C.FUNNELS, default_for_member=True),
    PermissionDef("manage_deals", "Gerenciar Deals", "Criar/editar negócios", _C.FUNNELS, default_for_member=True),
    PermissionDef("manage_stages", "Gerenciar Etapas", "Criar/editar etapas do funil", _C.FUNNELS),
    PermissionDef("manage_automations", "Gerenciar Automações", "Configurar automações do funil", _C.FUNNELS),
    PermissionDef("view_calendar", "Ver Calendário", "Visualizar calendário de tarefas", _C.CALENDAR, default_for_member=True),
    PermissionDef("manage_calendar", "Gerenciar Calendário", "Criar/editar tarefas no calendário", _C.CALENDAR, default_for_member=True),
    PermissionDef("view_analysis", "Ver Análises", "Visualizar análises de conversas", _C.ANALYSIS),
    PermissionDef("view_contacts", "Ver Contatos", "Visualizar lista de contatos", _C.CONTACTS, default_for_member=True),
    PermissionDef("create_contacts", "Criar Contatos", "Adicionar novos contatos", _C.CONTACTS, default_for_member=True),
    PermissionDef("edit_contacts", "Editar Contatos", "Editar contatos existentes", _C.CONTACTS, default_for_member=True),
    PermissionDef("delete_contacts", "Excluir Contatos", "Excluir contatos", _C.CONTACTS),
    PermissionDef("import_contacts", "Importar Contatos", "Importar contatos em massa", _C.CONTACTS),
    PermissionDef("manage_tags", "Gerenciar Tags", "Criar/editar tags de contatos", _C.CONTACTS),
    PermissionDef("search_leads", "Buscar Leads", "Buscar empresas e leads", _C.LEADS),
    PermissionDef("view_lists", "Ver Listas", "Visualizar listas de transmissão", _C.LISTS, default_for_member=True),
    PermissionDef("create_lists", "Criar Listas", "Criar novas listas", _C.LISTS),
    PermissionDef("send_broadcasts", "Enviar Transmissões", "Enviar mensagens em massa", _C.LISTS),
    PermissionDef("view_templates", "Ver Templates", "Visualizar templates de mensagem", _C.TEMPLATES, default_for_member=True),
    PermissionDef("create_templates", "Criar Templates", "Criar novos templates", _C.TEMPLATES),
    PermissionDef("delete_templates", "Excluir Templates", "Excluir templates", _C.TEMPLATES),
    PermissionDef("view_campaigns", "Ver Campanhas", "Visualizar campanhas", _C.CAMPAIGNS, default_for_member=True),
    PermissionDef("create_campaigns", "Criar Campanhas", "Criar novas campanhas", _C.CAMPAIGNS),
    PermissionDef("start_campaigns", "Iniciar Campanhas", "Iniciar/pausar campanhas", _C.CAMPAIGNS),
    PermissionDef("configure_ai_agent", "Configurar Agente IA", "Configurar agente de IA das campanhas", _C.CAMPAIGNS),
    PermissionDef("view_chatbots", "Ver Chatbots", "Visualizar chatbots", _C.CHATBOTS, default_for_member=True),
    PermissionDef("create_chatbots", "Criar Chatbots", "Criar novos chatbots", _C.CHATBOTS),
    PermissionDef("manage_chatbots", "Gerenciar Chatbots", "Editar e excluir chatbots", _C.CHATBOTS),
    PermissionDef("manage_subscription", "Gerenciar Assinatura", "Gerenciar plano e pagamentos", _C.SETTINGS),
    PermissionDef("manage_settings", "Gerenciar Configurações", "Acessar configurações do sistema", _C.SETTINGS),
    PermissionDef("invite_members", "Convidar Membros", "Convidar novos membros", _C.TEAM),
    PermissionDef("remove_members", "Remover Membros", "Remover membros da equipe", _C.TEAM),
    PermissionDef("edit_permissions", "Editar Permissões", "Editar permissões de membros", _C.TEAM),
    PermissionDef("reset_passwords", "Redefinir Senhas", "Redefinir senhas de membros", _C.TEAM),
)

PERMISSION_REGISTRY: dict[str, PermissionDef] = {p.key: p for p in PERMISSIONS}

# Sidebar route -> permission required to see it
SIDEBAR_PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("/dashboard", "view_dashboard"),
    ("/instances", "view_instances"),
    ("/warming", "view_warming"),
    ("/inbox", "view_inbox"),
    ("/funnels", "view_funnels"),
    ("/calendar", "view_calendar"),
    ("/analysis", "view_analysis"),
    ("/contacts", "view_contacts"),
    ("/lead-search", "search_leads"),
    ("/broadcast-lists", "view_lists"),
    ("/templates", "view_templates"),
    ("/campaigns", "view_campaigns"),
    ("/chatbots", "view_chatbots"),
    ("/subscription", "manage_subscription"),
    ("/settings", "manage_settings"),
)


def _as_role(role: TeamRole | str) -> TeamRole:
    return role if isinstance(role, TeamRole) else TeamRole(role)


def get_default_permissions(role: TeamRole | str) -> dict[str, bool]:
    """Static default permission map for a role."""
    is_admin = _as_role(role) == TeamRole.ADMIN
    return {
        p.key: p.default_for_admin if is_admin else p.default_for_member
        for p in PERMISSIONS
    }


def resolve_permission(
    role: TeamRole | str,
    overrides: Mapping[str, object] | None,
    key: str,
) -> bool:
    """Resolve whether ``key`` is granted.

    Admins short-circuit to True. For any other role a boolean override wins,
    anything else in the override map is ignored and the role default applies.
    Unknown keys are denied.
    """
    role = _as_role(role)
    if role == TeamRole.ADMIN:
        return True

    if overrides is not None:
        value = overrides.get(key)
        if isinstance(value, bool):
            return value

    definition = PERMISSION_REGISTRY.get(key)
    if definition is None:
        return False
    return definition.default_for_member


def resolve_all(
    role: TeamRole | str,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, bool]:
    """Resolve every registered permission for a role and override map."""
    return {p.key: resolve_permission(role, overrides, p.key) for p in PERMISSIONS}


def permissions_by_category() -> dict[PermissionCategory, list[PermissionDef]]:
    """Group registered permissions by category, keeping registry order."""
    grouped: dict[PermissionCategory, list[PermissionDef]] = {}
    for p in PERMISSIONS:
        grouped.setdefault(p.category, []).append(p)
    return grouped


def allowed_sidebar_paths(
    role: TeamRole | str,
    overrides: Mapping[str, object] | None = None,
) -> list[str]:
    """Sidebar routes visible to a role with the given overrides."""
    return [
        path
        for path, permission in SIDEBAR_PERMISSIONS
        if resolve_permission(role, overrides, permission)
    ]
