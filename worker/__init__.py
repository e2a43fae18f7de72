"""Worker 모듈 - 핸들러 레지스트리 및 잡 실행기"""
