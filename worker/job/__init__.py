"""
잡 핸들러 패키지

이 패키지 아래 모듈은 nexusjobs.app.load_handlers()로 로드되어
@handler 데코레이터 등록이 이루어집니다.
"""
