"""
Validação dos dados recebidos pela API
Erros são acumulados por campo e levantados como InvalidInput
"""
import re
from urllib.parse import urlparse

from nexfan.errors import InvalidInput
from nexfan.models import PlanInterval, ReportReason, ReportStatus, ReportTarget

SLUG_PATTERN = re.compile(r'^[a-z0-9-]+$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
# Caminhos fixos do blueprint de criador
RESERVED_SLUGS = ('plan', 'post', 'subscribers', 'earnings', 'stats')
SOCIAL_NETWORKS = ('twitter', 'instagram', 'youtube', 'website')
CURRENCIES = ('BRL', 'USD')

MIN_PLAN_PRICE = 500  # R$ 5,00
MAX_PLAN_PRICE = 1000000  # R$ 10.000,00


def _check_length(errors, field, value, min_len=None, max_len=None, label='Campo'):
    if not isinstance(value, str):
        errors[field] = f'{label} inválido'
        return
    if min_len is not None and len(value.strip()) < min_len:
        errors[field] = f'{label} deve ter pelo menos {min_len} caracteres'
    elif max_len is not None and len(value) > max_len:
        errors[field] = f'{label} deve ter no máximo {max_len} caracteres'


def _is_url(value):
    parsed = urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def _raise_if_errors(errors):
    if errors:
        raise InvalidInput('Dados inválidos', details=errors)


def validate_registration(data):
    data = data or {}
    errors = {}

    email = (data.get('email') or '').strip().lower()
    if not EMAIL_PATTERN.match(email):
        errors['email'] = 'Email inválido'

    name = data.get('name') or ''
    _check_length(errors, 'name', name, 2, 100, 'Nome')

    password = data.get('password') or ''
    if len(password) < 6:
        errors['password'] = 'A senha deve ter pelo menos 6 caracteres'

    _raise_if_errors(errors)
    return {'email': email, 'name': name.strip(), 'password': password}


def validate_plan(data, partial=False):
    """
    Valida criação/edição de plano

    Args:
        data (dict): Corpo da requisição
        partial (bool): Se True, apenas os campos presentes são validados

    Returns:
        dict: Campos validados prontos para o modelo
    """
    data = data or {}
    errors = {}
    cleaned = {}

    if 'name' in data or not partial:
        _check_length(errors, 'name', data.get('name'), 2, 50, 'Nome')
        if 'name' not in errors:
            cleaned['name'] = data['name'].strip()

    if data.get('description') is not None:
        _check_length(errors, 'description', data.get('description'), max_len=500, label='Descrição')
        if 'description' not in errors:
            cleaned['description'] = data['description']

    if 'price' in data or not partial:
        price = data.get('price')
        if not isinstance(price, int) or isinstance(price, bool):
            errors['price'] = 'Preço deve ser um valor inteiro em centavos'
        elif price < MIN_PLAN_PRICE:
            errors['price'] = 'Preço mínimo é R$ 5,00'
        elif price > MAX_PLAN_PRICE:
            errors['price'] = 'Preço máximo é R$ 10.000,00'
        else:
            cleaned['price'] = price

    if 'currency' in data or not partial:
        currency = data.get('currency') or 'BRL'
        if currency not in CURRENCIES:
            errors['currency'] = 'Moeda inválida'
        else:
            cleaned['currency'] = currency

    # Apenas planos mensais são permitidos
    interval = data.get('interval', PlanInterval.MONTHLY)
    if interval != PlanInterval.MONTHLY:
        errors['interval'] = 'Apenas planos mensais são permitidos'

    if 'benefits' in data or not partial:
        benefits = data.get('benefits')
        if not isinstance(benefits, list) or not benefits:
            errors['benefits'] = 'Adicione pelo menos um benefício'
        elif len(benefits) > 10:
            errors['benefits'] = 'Máximo de 10 benefícios'
        elif any(not isinstance(b, str) or not b.strip() for b in benefits):
            errors['benefits'] = 'Benefício não pode estar vazio'
        else:
            cleaned['benefits'] = [b.strip() for b in benefits]

    _raise_if_errors(errors)
    return cleaned


def validate_post(data, partial=False):
    data = data or {}
    errors = {}
    cleaned = {}

    if 'title' in data or not partial:
        _check_length(errors, 'title', data.get('title'), 1, 200, 'Título')
        if 'title' not in errors:
            cleaned['title'] = data['title'].strip()

    if data.get('content') is not None:
        _check_length(errors, 'content', data.get('content'), max_len=10000, label='Conteúdo')
        if 'content' not in errors:
            cleaned['content'] = data['content']

    if 'isPublic' in data or not partial:
        is_public = data.get('isPublic', False)
        if not isinstance(is_public, bool):
            errors['isPublic'] = 'Valor inválido'
        else:
            cleaned['is_public'] = is_public

    if 'isPinned' in data:
        if not isinstance(data['isPinned'], bool):
            errors['isPinned'] = 'Valor inválido'
        else:
            cleaned['is_pinned'] = data['isPinned']

    if data.get('planIds') is not None:
        plan_ids = data['planIds']
        if not isinstance(plan_ids, list) or not all(isinstance(p, int) and not isinstance(p, bool)
                                                      for p in plan_ids):
            errors['planIds'] = 'Lista de planos inválida'
        else:
            cleaned['plan_ids'] = list(dict.fromkeys(plan_ids))

    if data.get('media') is not None:
        media = data['media']
        if not isinstance(media, list) or not all(
                isinstance(m, dict) and isinstance(m.get('url'), str) and m.get('type') in ('IMAGE', 'VIDEO')
                for m in media):
            errors['media'] = 'Lista de mídia inválida'
        else:
            cleaned['media'] = [{'url': m['url'], 'type': m['type']} for m in media]

    _raise_if_errors(errors)
    return cleaned


def validate_creator_profile(data, partial=False):
    data = data or {}
    errors = {}
    cleaned = {}

    if 'displayName' in data or not partial:
        _check_length(errors, 'displayName', data.get('displayName'), 2, 50, 'Nome')
        if 'displayName' not in errors:
            cleaned['display_name'] = data['displayName'].strip()

    if 'slug' in data or not partial:
        slug = data.get('slug')
        _check_length(errors, 'slug', slug, 3, 30, 'URL')
        if 'slug' not in errors:
            if not SLUG_PATTERN.match(slug):
                errors['slug'] = 'URL pode conter apenas letras minúsculas, números e hífens'
            elif slug in RESERVED_SLUGS:
                errors['slug'] = 'Esta URL é reservada'
            else:
                cleaned['slug'] = slug

    if data.get('bio') is not None:
        _check_length(errors, 'bio', data.get('bio'), max_len=500, label='Bio')
        if 'bio' not in errors:
            cleaned['bio'] = data['bio']

    if data.get('socialLinks') is not None:
        links = data['socialLinks']
        if not isinstance(links, dict):
            errors['socialLinks'] = 'Links inválidos'
        else:
            for network in SOCIAL_NETWORKS:
                value = links.get(network) or ''
                if value and not _is_url(value):
                    errors[f'socialLinks.{network}'] = 'URL inválida'
            if not any(key.startswith('socialLinks') for key in errors):
                cleaned['social_links'] = {n: links.get(n) or '' for n in SOCIAL_NETWORKS}

    _raise_if_errors(errors)
    return cleaned


def validate_comment(data):
    data = data or {}
    errors = {}

    content = data.get('content')
    if not isinstance(content, str) or not content.strip():
        errors['content'] = 'Comentário não pode estar vazio'
    elif len(content) > 1000:
        errors['content'] = 'Comentário muito longo'

    _raise_if_errors(errors)
    return {'content': content.strip()}


def validate_report(data):
    """
    Valida uma denúncia

    Returns:
        dict: target_type, target_id, reason e description (opcional)
    """
    data = data or {}
    errors = {}
    cleaned = {}

    if data.get('targetType') not in ReportTarget.ALL:
        errors['targetType'] = 'Tipo de alvo inválido'
    else:
        cleaned['target_type'] = data['targetType']

    target_id = data.get('targetId')
    if not isinstance(target_id, int) or isinstance(target_id, bool):
        errors['targetId'] = 'ID do alvo é obrigatório'
    else:
        cleaned['target_id'] = target_id

    if data.get('reason') not in ReportReason.ALL:
        errors['reason'] = 'Motivo inválido'
    else:
        cleaned['reason'] = data['reason']

    if data.get('description') is not None:
        _check_length(errors, 'description', data.get('description'), max_len=1000, label='Descrição')
        if 'description' not in errors:
            cleaned['description'] = data['description']

    _raise_if_errors(errors)
    return cleaned


def validate_report_update(data):
    data = data or {}
    errors = {}
    cleaned = {}

    if data.get('status') not in ReportStatus.ALL:
        errors['status'] = 'Status inválido'
    else:
        cleaned['status'] = data['status']

    if data.get('resolution') is not None:
        _check_length(errors, 'resolution', data.get('resolution'), max_len=1000, label='Resolução')
        if 'resolution' not in errors:
            cleaned['resolution'] = data['resolution']

    if 'removeContent' in data:
        if not isinstance(data['removeContent'], bool):
            errors['removeContent'] = 'Valor inválido'
        else:
            cleaned['remove_content'] = data['removeContent']

    _raise_if_errors(errors)
    return cleaned
