"""
Report API endpoints
Templates, report generation, downloads, scheduled reports and data export
"""

from flask import Blueprint, request, jsonify, send_file, Response
from flask_jwt_extended import jwt_required, get_jwt_identity
import io
import logging

from credit_portfolio import db, limiter
from credit_portfolio.models import User, ReportTemplate, ReportGenerationJob, ScheduledReport
from credit_portfolio.services.report_service import (
    BUILT_IN_TEMPLATE_IDS, FILE_EXTENSIONS, ReportGenerationError, UnsupportedFormatError,
    apply_scheduled_report, built_in_templates, create_report_job, export_data, record_template_usage,
    render_report, run_report_job, run_scheduled_report, validate_export_config, validate_report_config,
    validate_scheduled_report, validate_template
)

reports_bp = Blueprint('reports', __name__)
logger = logging.getLogger(__name__)

FORMAT_BY_EXTENSION = {extension: file_format for file_format, extension in FILE_EXTENSIONS.items()}

def file_response(body, mimetype, filename):
    """Attachment response for rendered text or an in-memory workbook."""
    if isinstance(body, io.BytesIO):
        return send_file(body, mimetype=mimetype, as_attachment=True, download_name=filename)

    response = Response(body, mimetype=mimetype)
    response.headers['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response

def _user_label(user_id):
    user = db.session.get(User, user_id)
    return user.email if user else None

def _template_not_found():
    return jsonify({
        'error': 'Template not found',
        'message': 'No report template with this ID'
    }), 404

def _schedule_not_found():
    return jsonify({
        'error': 'Scheduled report not found',
        'message': 'No scheduled report with this ID'
    }), 404

def _unsupported_format(error):
    return jsonify({
        'error': 'Format not supported',
        'message': str(error)
    }), 501

# Templates

@reports_bp.route('/templates', methods=['GET'])
@jwt_required()
def list_templates():
    """Built-in templates followed by the user's custom templates."""
    try:
        category = request.args.get('category')
        custom = ReportTemplate.query.filter_by(user_id=get_jwt_identity()) \
            .order_by(ReportTemplate.created_at.desc()).all()

        templates = built_in_templates() + [template.to_dict() for template in custom]
        if category:
            templates = [t for t in templates if t['category'] == category]

        return jsonify({
            'success': True,
            'data': templates
        }), 200

    except Exception as e:
        logger.error(f"Template listing failed: {str(e)}")
        return jsonify({
            'error': 'Template retrieval failed',
            'message': 'Failed to fetch report templates'
        }), 500

@reports_bp.route('/templates', methods=['POST'])
@jwt_required()
def create_template():
    try:
        user_id = get_jwt_identity()
        data = request.get_json() or {}

        error = validate_template(data)
        if error:
            return jsonify({
                'error': 'Invalid template',
                'message': error
            }), 400

        template = ReportTemplate(
            user_id=user_id,
            name=data['name'],
            description=data.get('description'),
            category=data.get('category') or 'custom',
            sections=data['sections'],
            default_format=data.get('defaultFormat') or 'pdf',
            created_by=_user_label(user_id)
        )
        db.session.add(template)
        db.session.commit()

        logger.info(f"Report template created: {template.id}")

        return jsonify({
            'success': True,
            'data': template.to_dict(),
            'message': 'Template created successfully'
        }), 201

    except Exception as e:
        logger.error(f"Template creation failed: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Template creation failed',
            'message': 'Failed to create report template'
        }), 500

@reports_bp.route('/templates/<template_id>', methods=['GET'])
@jwt_required()
def get_template(template_id):
    if template_id in BUILT_IN_TEMPLATE_IDS:
        template = next(t for t in built_in_templates() if t['id'] == template_id)
        return jsonify({'success': True, 'data': template}), 200

    template = ReportTemplate.query.filter_by(id=template_id, user_id=get_jwt_identity()).first()
    if not template:
        return _template_not_found()

    return jsonify({'success': True, 'data': template.to_dict()}), 200

@reports_bp.route('/templates/<template_id>', methods=['PUT'])
@jwt_required()
def update_template(template_id):
    if template_id in BUILT_IN_TEMPLATE_IDS:
        return jsonify({
            'error': 'Forbidden',
            'message': 'Built-in templates cannot be modified'
        }), 403

    try:
        template = ReportTemplate.query.filter_by(id=template_id, user_id=get_jwt_identity()).first()
        if not template:
            return _template_not_found()

        data = request.get_json() or {}
        merged = {
            'name': data.get('name', template.name),
            'sections': data.get('sections', template.sections),
            'category': data.get('category', template.category),
            'defaultFormat': data.get('defaultFormat', template.default_format)
        }

        error = validate_template(merged)
        if error:
            return jsonify({
                'error': 'Invalid template',
                'message': error
            }), 400

        template.name = merged['name']
        template.sections = merged['sections']
        template.category = merged['category']
        template.default_format = merged['defaultFormat']
        if 'description' in data:
            template.description = data['description']

        db.session.commit()

        return jsonify({
            'success': True,
            'data': template.to_dict(),
            'message': 'Template updated successfully'
        }), 200

    except Exception as e:
        logger.error(f"Template update failed for {template_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Template update failed',
            'message': 'Failed to update report template'
        }), 500

@reports_bp.route('/templates/<template_id>', methods=['DELETE'])
@jwt_required()
def delete_template(template_id):
    if template_id in BUILT_IN_TEMPLATE_IDS:
        return jsonify({
            'error': 'Forbidden',
            'message': 'Built-in templates cannot be deleted'
        }), 403

    try:
        template = ReportTemplate.query.filter_by(id=template_id, user_id=get_jwt_identity()).first()
        if not template:
            return _template_not_found()

        db.session.delete(template)
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'Template deleted successfully'
        }), 200

    except Exception as e:
        logger.error(f"Template deletion failed for {template_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Template deletion failed',
            'message': 'Failed to delete report template'
        }), 500

# Generation

@reports_bp.route('/generate', methods=['POST'])
@jwt_required()
@limiter.limit("10 per minute")
def generate_report():
    """Create a report job and build its content."""
    try:
        user_id = get_jwt_identity()
        data = request.get_json() or {}

        error = validate_report_config(data)
        if error:
            return jsonify({
                'error': 'Invalid report configuration',
                'message': error
            }), 400

        job = create_report_job(user_id, data)
        record_template_usage(data['templateId'], user_id)
        run_report_job(job)
        db.session.commit()

        return jsonify({
            'success': True,
            'data': {
                'reportId': job.id,
                'status': job.status,
                'message': 'Report generation started successfully'
            }
        }), 200

    except Exception as e:
        logger.error(f"Report generation failed: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Report generation failed',
            'message': 'Failed to generate report'
        }), 500

@reports_bp.route('/jobs', methods=['GET'])
@jwt_required()
def list_jobs():
    limit = min(request.args.get('limit', 20, type=int), 100)
    jobs = ReportGenerationJob.query.filter_by(user_id=get_jwt_identity()) \
        .order_by(ReportGenerationJob.created_at.desc()).limit(limit).all()

    return jsonify({
        'success': True,
        'data': [job.to_dict() for job in jobs]
    }), 200

@reports_bp.route('/jobs/<job_id>', methods=['GET'])
@jwt_required()
def get_job(job_id):
    job = ReportGenerationJob.query.filter_by(id=job_id, user_id=get_jwt_identity()).first()
    if not job:
        return jsonify({
            'error': 'Report job not found',
            'message': 'No report job with this ID'
        }), 404

    return jsonify({
        'success': True,
        'data': job.to_dict(include_content=request.args.get('include_content') == 'true')
    }), 200

@reports_bp.route('/download/<job_id>.<extension>', methods=['GET'])
@jwt_required()
def download_report(job_id, extension):
    """Render a completed job in the requested format."""
    file_format = extension if extension in FILE_EXTENSIONS else FORMAT_BY_EXTENSION.get(extension)
    if not file_format:
        return jsonify({
            'error': 'Invalid format',
            'message': f'Unsupported file extension: {extension}'
        }), 400

    job = ReportGenerationJob.query.filter_by(id=job_id, user_id=get_jwt_identity()).first()
    if not job:
        return jsonify({
            'error': 'Report job not found',
            'message': 'No report job with this ID'
        }), 404

    if job.status != 'completed':
        return jsonify({
            'error': 'Report not ready',
            'message': 'Report is not ready for download'
        }), 400

    try:
        body, mimetype, filename = render_report(job, file_format)
        return file_response(body, mimetype, filename)

    except UnsupportedFormatError as e:
        return _unsupported_format(e)
    except ReportGenerationError as e:
        logger.error(f"Report rendering failed for {job_id}: {str(e)}")
        return jsonify({
            'error': 'Report rendering failed',
            'message': str(e)
        }), 500

# Scheduled reports

def _merged_schedule_payload(report, data):
    payload = {
        'name': report.name,
        'description': report.description,
        'templateId': report.template_id,
        'schedule': report.schedule,
        'recipients': report.recipients,
        'format': report.format,
        'filters': report.filters,
        'isActive': report.is_active
    }
    schedule = dict(payload['schedule'])
    schedule.update(data.get('schedule') or {})
    payload.update({key: value for key, value in data.items() if key != 'schedule'})
    payload['schedule'] = schedule
    return payload

@reports_bp.route('/scheduled', methods=['GET'])
@jwt_required()
def list_scheduled_reports():
    try:
        reports = ScheduledReport.query.filter_by(user_id=get_jwt_identity()) \
            .order_by(ScheduledReport.created_at.desc()).all()

        return jsonify({
            'success': True,
            'data': [report.to_dict() for report in reports]
        }), 200

    except Exception as e:
        logger.error(f"Scheduled report listing failed: {str(e)}")
        return jsonify({
            'error': 'Scheduled report retrieval failed',
            'message': 'Failed to fetch scheduled reports'
        }), 500

@reports_bp.route('/scheduled', methods=['POST'])
@jwt_required()
def create_scheduled_report():
    try:
        user_id = get_jwt_identity()
        data = request.get_json() or {}

        error = validate_scheduled_report(data)
        if error:
            return jsonify({
                'error': 'Invalid scheduled report',
                'message': error
            }), 400

        report = ScheduledReport(user_id=user_id, created_by=_user_label(user_id))
        apply_scheduled_report(report, data)
        db.session.add(report)
        db.session.commit()

        logger.info(f"Scheduled report created: {report.id} ({report.frequency})")

        return jsonify({
            'success': True,
            'data': report.to_dict(),
            'message': 'Scheduled report created successfully'
        }), 201

    except Exception as e:
        logger.error(f"Scheduled report creation failed: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Scheduled report creation failed',
            'message': 'Failed to create scheduled report'
        }), 500

@reports_bp.route('/scheduled/<schedule_id>', methods=['GET'])
@jwt_required()
def get_scheduled_report(schedule_id):
    report = ScheduledReport.query.filter_by(id=schedule_id, user_id=get_jwt_identity()).first()
    if not report:
        return _schedule_not_found()

    return jsonify({'success': True, 'data': report.to_dict()}), 200

@reports_bp.route('/scheduled/<schedule_id>', methods=['PUT'])
@jwt_required()
def update_scheduled_report(schedule_id):
    try:
        report = ScheduledReport.query.filter_by(id=schedule_id, user_id=get_jwt_identity()).first()
        if not report:
            return _schedule_not_found()

        payload = _merged_schedule_payload(report, request.get_json() or {})
        error = validate_scheduled_report(payload)
        if error:
            return jsonify({
                'error': 'Invalid scheduled report',
                'message': error
            }), 400

        apply_scheduled_report(report, payload)
        db.session.commit()

        return jsonify({
            'success': True,
            'data': report.to_dict(),
            'message': 'Scheduled report updated successfully'
        }), 200

    except Exception as e:
        logger.error(f"Scheduled report update failed for {schedule_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Scheduled report update failed',
            'message': 'Failed to update scheduled report'
        }), 500

@reports_bp.route('/scheduled/<schedule_id>', methods=['DELETE'])
@jwt_required()
def delete_scheduled_report(schedule_id):
    try:
        report = ScheduledReport.query.filter_by(id=schedule_id, user_id=get_jwt_identity()).first()
        if not report:
            return _schedule_not_found()

        db.session.delete(report)
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'Scheduled report deleted successfully'
        }), 200

    except Exception as e:
        logger.error(f"Scheduled report deletion failed for {schedule_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Scheduled report deletion failed',
            'message': 'Failed to delete scheduled report'
        }), 500

@reports_bp.route('/scheduled/<schedule_id>/run', methods=['POST'])
@jwt_required()
@limiter.limit("10 per minute")
def run_scheduled(schedule_id):
    """Run a scheduled report immediately."""
    try:
        report = ScheduledReport.query.filter_by(id=schedule_id, user_id=get_jwt_identity()).first()
        if not report:
            return _schedule_not_found()

        job = run_scheduled_report(report)
        db.session.commit()

        return jsonify({
            'success': True,
            'data': {
                'jobId': job.id,
                'status': job.status,
                'message': 'Report generation started successfully'
            }
        }), 200

    except Exception as e:
        logger.error(f"Scheduled report run failed for {schedule_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Scheduled report run failed',
            'message': 'Failed to run scheduled report'
        }), 500

# Export

@reports_bp.route('/export', methods=['POST'])
@jwt_required()
@limiter.limit("20 per minute")
def export():
    """Export portfolio data as a CSV, Excel or JSON file."""
    data = request.get_json() or {}

    error = validate_export_config(data)
    if error:
        return jsonify({
            'error': 'Invalid export configuration',
            'message': error
        }), 400

    try:
        result = export_data(data, get_jwt_identity())
        response = file_response(result['body'], result['mimetype'], result['filename'])
        response.headers['X-Record-Count'] = str(result['record_count'])
        return response

    except UnsupportedFormatError as e:
        return _unsupported_format(e)
    except ReportGenerationError as e:
        return jsonify({
            'error': 'Export failed',
            'message': str(e)
        }), 400
    except Exception as e:
        logger.error(f"Data export failed: {str(e)}")
        return jsonify({
            'error': 'Export failed',
            'message': 'Failed to export data'
        }), 500
